"""Response models for the Zipline REST API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Thumbnail(BaseModel):
    path: str


class FileModel(BaseModel):
    """A stored file as returned by ``/api/user/files``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    original_name: str | None = Field(default=None, alias="originalName")
    size: int
    type: str
    views: int = 0
    max_views: int | None = Field(default=None, alias="maxViews")
    favorite: bool = False
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    deletes_at: str | None = Field(default=None, alias="deletesAt")
    folder_id: str | None = Field(default=None, alias="folderId")
    thumbnail: Thumbnail | None = None
    tags: list[str] = Field(default_factory=list)
    password: str | None = None
    url: str | None = None


class SearchInfo(BaseModel):
    field: str
    query: str


class ListUserFilesResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    page: list[FileModel]
    total: int = 0
    pages: int = 0
    search: SearchInfo | None = None


class Folder(BaseModel):
    """A folder; ``id`` may be absent in some server responses."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    name: str
    public: bool | None = None
    allow_uploads: bool | None = Field(default=None, alias="allowUploads")
    files: list[dict] | None = None
