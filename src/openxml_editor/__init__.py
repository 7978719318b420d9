"""Edit the XML parts of OpenXML documents as ordinary files on disk."""

__version__ = "0.2.0"
