"""
Domain entities indexed by the RAG subsystem.

These mirror the JSON the novel-writing service persists; only the fields
that feed retrieval are required.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class WorldView(BaseModel):
    id: str
    project_id: str
    title: str = ""
    synopsis: str = ""
    setting: str = ""
    key_rules: List[str] = Field(default_factory=list)
    tone_examples: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class Character(BaseModel):
    id: str
    project_id: str
    name: str
    role: str = ""
    age: int = 0
    appearance: str = ""
    background: str = ""
    motivation: str = ""
    flaws: List[str] = Field(default_factory=list)
    speech_tone: str = ""
    secrets: List[str] = Field(default_factory=list)
    relationship_map: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class ChapterOutline(BaseModel):
    index: int
    title: str = ""
    summary: str = ""
    goal: str = ""
    twist_hint: str = ""
    important_items: List[str] = Field(default_factory=list)


class Outline(BaseModel):
    id: str
    project_id: str
    chapters: List[ChapterOutline] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class Chapter(BaseModel):
    id: str
    project_id: str
    index: int
    title: str = ""
    raw_content: str = ""
    polished_content: str = ""
    summary: str = ""
    word_count: int = 0
    status: str = "draft"  # draft / polished / completed
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def content(self) -> str:
        """Polished text when available, raw text otherwise."""
        return self.polished_content or self.raw_content


class NovelProject(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    genre: str = ""
    target_audience: str = ""
    tone: str = ""
    themes: List[str] = Field(default_factory=list)
    status: str = "draft"
    world_view: Optional[WorldView] = None
    characters: List[Character] = Field(default_factory=list)
    outline: Optional[Outline] = None
    chapters: List[Chapter] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
