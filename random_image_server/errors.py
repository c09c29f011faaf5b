from typing import Dict, Optional

from fastapi import HTTPException


class ConfigError(Exception):
    """Configuration file is missing or malformed. Fatal at startup."""


class ForbiddenReferer(HTTPException):
    def __init__(self, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=403, detail="Access denied", headers=headers)


class DirectoryUnreadable(HTTPException):
    def __init__(self, directory: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=500, detail="Unable to read image directory", headers=headers)
        self.directory = directory


class NoEligibleFiles(HTTPException):
    def __init__(self, directory: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=404, detail="No valid images found", headers=headers)
        self.directory = directory


class FileUnreadable(HTTPException):
    def __init__(self, path: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(status_code=500, detail="Unable to read image file", headers=headers)
        self.path = path
