"""
Permission Models
Fixed-field capability sets for documents and folders
"""

from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Canonical capability order, shared by the models and the permission tables
CAPABILITIES = (
    "can_fence",
    "can_view",
    "can_download_encrypted",
    "can_download_pdf",
    "can_download_original",
    "can_upload",
    "can_manage",
)


class DocumentPermissions(BaseModel):
    """Effective capability set of one user on one document"""

    can_fence: bool = Field(False, description="Fenced (redacted) view")
    can_view: bool = Field(False, description="Full view")
    can_download_encrypted: bool = Field(False, description="Download encrypted copy")
    can_download_pdf: bool = Field(False, description="Download as PDF")
    can_download_original: bool = Field(False, description="Download original file")
    can_upload: bool = Field(False, description="Upload new files or versions")
    can_manage: bool = Field(False, description="Copy, move, rename, delete, redact, label")

    @classmethod
    def none(cls):
        """Capability set with every field denied"""
        return cls()

    @classmethod
    def all(cls):
        """Capability set with every field granted"""
        return cls(**{name: True for name in CAPABILITIES})

    @classmethod
    def from_row(cls, row: Any):
        """Copy the seven capability columns off a permission row"""
        return cls(**{name: bool(getattr(row, name)) for name in CAPABILITIES})

    def merge(self, other: "DocumentPermissions"):
        """Field-wise OR of two capability sets"""
        return self.__class__(
            **{name: getattr(self, name) or getattr(other, name) for name in CAPABILITIES}
        )

    def granted(self) -> list:
        """Names of the granted capabilities, in canonical order"""
        return [name for name in CAPABILITIES if getattr(self, name)]


class FolderPermissions(DocumentPermissions):
    """Effective capability set of one user on one folder"""


class PermissionUpdate(BaseModel):
    """Partial capability update; only explicitly set fields are written"""

    model_config = ConfigDict(extra="forbid")

    can_fence: Optional[bool] = None
    can_view: Optional[bool] = None
    can_download_encrypted: Optional[bool] = None
    can_download_pdf: Optional[bool] = None
    can_download_original: Optional[bool] = None
    can_upload: Optional[bool] = None
    can_manage: Optional[bool] = None

    @classmethod
    def coerce(cls, value: Union["PermissionUpdate", Mapping[str, Any]]) -> "PermissionUpdate":
        if isinstance(value, cls):
            return value
        return cls.model_validate(dict(value))

    def changes(self) -> Dict[str, bool]:
        """Fields the caller set; None counts as not set"""
        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None
        }
