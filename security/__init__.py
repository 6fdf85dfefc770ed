from .encryption import (
    EXPORT_KEY_ENV,
    EncryptionError,
    ExportDecryptionError,
    MissingExportEncryptionKeyError,
    decrypt_export,
    encrypt_export,
    export_key_configured,
    is_encrypted_export,
    require_export_key,
)

__all__ = [
    "EXPORT_KEY_ENV",
    "EncryptionError",
    "ExportDecryptionError",
    "MissingExportEncryptionKeyError",
    "decrypt_export",
    "encrypt_export",
    "export_key_configured",
    "is_encrypted_export",
    "require_export_key",
]
