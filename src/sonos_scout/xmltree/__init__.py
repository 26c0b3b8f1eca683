"""
XML decoding and path queries for device descriptions and SOAP responses.
"""
from .parser import ROOT_NAME, XmlNode, decode_xml, parse, query

__all__ = [
    "ROOT_NAME",
    "XmlNode",
    "decode_xml",
    "parse",
    "query",
]
