from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CatalogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    hls_ready: bool = Field(default=False, alias="hlsReady")
    primary_playlist_url: Optional[str] = Field(default=None, alias="primaryPlaylistUrl")
    master_playlist_url: Optional[str] = Field(default=None, alias="masterPlaylistUrl")
    has_subtitles: bool = Field(default=False, alias="hasSubtitles")
    subtitles: List[str] = []  # sidecar .vtt/.srt files

    @property
    def source(self) -> Optional[str]:
        return self.master_playlist_url or self.primary_playlist_url
