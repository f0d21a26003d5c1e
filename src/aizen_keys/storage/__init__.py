"""Persistence for issued keys."""
from .keystore import JsonKeyStore, KeyStore, decode_document, encode_document
from .memory import MemoryKeyStore

__all__ = ["JsonKeyStore", "KeyStore", "MemoryKeyStore", "decode_document", "encode_document"]
