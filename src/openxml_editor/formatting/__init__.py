"""XML formatting for OpenXML parts."""

from .xml_formatter import XMLFormatter, fallback_format, format_xml, tokenize

__all__ = ["XMLFormatter", "fallback_format", "format_xml", "tokenize"]
