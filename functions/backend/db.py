"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.types import PANEL_COUNT, Panel, Panorama

CONTENT_TYPE_STORY = "story"
CONTENT_TYPE_VIGNETTE = "vignette_story"


class DbClient(Protocol):
    """Interface for database access."""

    def create_story(
        self,
        user_id: str,
        *,
        content_type: str,
        title: str,
        body: str,
        theme: Optional[str] = None,
        generation_metadata: Optional[dict] = None,
        panel_count: int = PANEL_COUNT,
    ) -> "StoryRecord":
        ...

    def get_story(
        self,
        story_id: str,
        user_id: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Optional["StoryRecord"]:
        ...

    def update_story(
        self,
        story_id: str,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        generation_metadata: Optional[dict] = None,
        vignette_helper_prompt: Optional[str] = None,
        vignette_prompt: Optional[str] = None,
    ) -> None:
        ...

    def save_character(self, character: "CharacterRecord") -> None:
        ...

    def get_characters(
        self, character_ids: Iterable[str], user_id: str
    ) -> List["CharacterRecord"]:
        ...

    def link_story_characters(
        self, story_id: str, character_ids: Iterable[str]
    ) -> None:
        ...

    def get_story_characters(self, story_id: str) -> List["CharacterRecord"]:
        ...

    def record_panels(
        self, story_id: str, panorama: Panorama, panels: List[Panel]
    ) -> None:
        ...

    def clear_panels(self, story_id: str) -> None:
        ...

    def get_panels(self, story_id: str) -> List[Panel]:
        ...

    def get_panorama(self, story_id: str) -> Optional[Panorama]:
        ...


@dataclass
class StoryRecord:
    story_id: str
    user_id: str
    content_type: str
    title: str
    body: str
    theme: Optional[str] = None
    generation_metadata: dict = field(default_factory=dict)
    vignette_helper_prompt: Optional[str] = None
    vignette_prompt: Optional[str] = None
    panel_count: int = PANEL_COUNT
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def paragraphs(self) -> List[str]:
        """Story beats, from generation metadata or the body's blank-line blocks."""
        paragraphs = self.generation_metadata.get("paragraphs") or []
        if paragraphs:
            return [p for p in paragraphs if isinstance(p, str)]
        return [block.strip() for block in (self.body or "").split("\n\n") if block.strip()]

    def as_dict(self) -> dict:
        return {
            "story_id": self.story_id,
            "user_id": self.user_id,
            "content_type": self.content_type,
            "title": self.title,
            "body": self.body,
            "theme": self.theme,
            "generation_metadata": self.generation_metadata,
            "panel_count": self.panel_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CharacterRecord:
    character_id: str
    user_id: str
    name: str
    character_type: str = "storybook_character"
    attributes: dict = field(default_factory=dict)
    appearance_description: Optional[str] = None


def _check_panel_set(story_id: str, panorama: Panorama, panels: List[Panel]) -> None:
    indexes = sorted(panel.index for panel in panels)
    if indexes != list(range(PANEL_COUNT)):
        raise ValueError(
            f"Expected panels 0..{PANEL_COUNT - 1} for {story_id}, got {indexes}"
        )
    if panorama.story_id != story_id or any(p.story_id != story_id for p in panels):
        raise ValueError(f"Panel set does not belong to story {story_id}")


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.stories: Dict[str, StoryRecord] = {}
        self.characters: Dict[str, CharacterRecord] = {}
        self.story_characters: Dict[str, List[str]] = {}
        self.panels: Dict[str, List[Panel]] = {}
        self.panoramas: Dict[str, Panorama] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.stories.clear()
        self.characters.clear()
        self.story_characters.clear()
        self.panels.clear()
        self.panoramas.clear()

    def create_story(
        self,
        user_id: str,
        *,
        content_type: str,
        title: str,
        body: str,
        theme: Optional[str] = None,
        generation_metadata: Optional[dict] = None,
        panel_count: int = PANEL_COUNT,
    ) -> StoryRecord:
        record = StoryRecord(
            story_id=str(uuid.uuid4()),
            user_id=user_id,
            content_type=content_type,
            title=title,
            body=body,
            theme=theme,
            generation_metadata=copy.deepcopy(generation_metadata or {}),
            panel_count=panel_count,
        )
        self.stories[record.story_id] = record
        return record

    def get_story(
        self,
        story_id: str,
        user_id: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Optional[StoryRecord]:
        story = self.stories.get(story_id)
        if not story:
            return None
        if user_id is not None and story.user_id != user_id:
            return None
        if content_type is not None and story.content_type != content_type:
            return None
        return story

    def update_story(
        self,
        story_id: str,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        generation_metadata: Optional[dict] = None,
        vignette_helper_prompt: Optional[str] = None,
        vignette_prompt: Optional[str] = None,
    ) -> None:
        story = self.stories.get(story_id)
        if not story:
            return
        if title is not None:
            story.title = title
        if body is not None:
            story.body = body
        if generation_metadata:
            story.generation_metadata = {
                **story.generation_metadata,
                **copy.deepcopy(generation_metadata),
            }
        if vignette_helper_prompt is not None:
            story.vignette_helper_prompt = vignette_helper_prompt
        if vignette_prompt is not None:
            story.vignette_prompt = vignette_prompt
        story.updated_at = time.time()

    def save_character(self, character: CharacterRecord) -> None:
        self.characters[character.character_id] = character

    def get_characters(
        self, character_ids: Iterable[str], user_id: str
    ) -> List[CharacterRecord]:
        found = []
        for character_id in character_ids:
            character = self.characters.get(character_id)
            if character and character.user_id == user_id:
                found.append(character)
        return found

    def link_story_characters(
        self, story_id: str, character_ids: Iterable[str]
    ) -> None:
        linked = self.story_characters.setdefault(story_id, [])
        for character_id in character_ids:
            if character_id not in linked:
                linked.append(character_id)

    def get_story_characters(self, story_id: str) -> List[CharacterRecord]:
        return [
            self.characters[character_id]
            for character_id in self.story_characters.get(story_id, [])
            if character_id in self.characters
        ]

    def record_panels(
        self, story_id: str, panorama: Panorama, panels: List[Panel]
    ) -> None:
        _check_panel_set(story_id, panorama, panels)
        # Swap the whole set in one assignment so readers never see a partial set
        self.panels[story_id] = sorted(panels, key=lambda p: p.index)
        self.panoramas[story_id] = panorama

    def clear_panels(self, story_id: str) -> None:
        self.panels.pop(story_id, None)
        self.panoramas.pop(story_id, None)

    def get_panels(self, story_id: str) -> List[Panel]:
        return list(self.panels.get(story_id, []))

    def get_panorama(self, story_id: str) -> Optional[Panorama]:
        return self.panoramas.get(story_id)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_story_record(self, row: "StoryRow") -> StoryRecord:
        return StoryRecord(
            story_id=row.id,
            user_id=row.user_id,
            content_type=row.content_type,
            title=row.title,
            body=row.body,
            theme=row.theme,
            generation_metadata=dict(row.generation_metadata or {}),
            vignette_helper_prompt=row.vignette_helper_prompt,
            vignette_prompt=row.vignette_prompt,
            panel_count=row.panel_count,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_character_record(self, row: "CharacterRow") -> CharacterRecord:
        return CharacterRecord(
            character_id=row.id,
            user_id=row.user_id,
            name=row.name,
            character_type=row.character_type,
            attributes=dict(row.attributes or {}),
            appearance_description=row.appearance_description,
        )

    def create_story(
        self,
        user_id: str,
        *,
        content_type: str,
        title: str,
        body: str,
        theme: Optional[str] = None,
        generation_metadata: Optional[dict] = None,
        panel_count: int = PANEL_COUNT,
    ) -> StoryRecord:
        now = time.time()
        with self.Session() as session:
            row = StoryRow(
                id=str(uuid.uuid4()),
                user_id=user_id,
                content_type=content_type,
                title=title,
                body=body,
                theme=theme,
                generation_metadata=generation_metadata or {},
                panel_count=panel_count,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_story_record(row)

    def get_story(
        self,
        story_id: str,
        user_id: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> Optional[StoryRecord]:
        with self.Session() as session:
            stmt = select(StoryRow).where(StoryRow.id == story_id)
            if user_id is not None:
                stmt = stmt.where(StoryRow.user_id == user_id)
            if content_type is not None:
                stmt = stmt.where(StoryRow.content_type == content_type)
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            return self._to_story_record(row)

    def update_story(
        self,
        story_id: str,
        *,
        title: Optional[str] = None,
        body: Optional[str] = None,
        generation_metadata: Optional[dict] = None,
        vignette_helper_prompt: Optional[str] = None,
        vignette_prompt: Optional[str] = None,
    ) -> None:
        with self.Session() as session:
            row = session.get(StoryRow, story_id)
            if not row:
                return
            if title is not None:
                row.title = title
            if body is not None:
                row.body = body
            if generation_metadata:
                # Reassign so the JSON column is flagged dirty
                row.generation_metadata = {
                    **(row.generation_metadata or {}),
                    **generation_metadata,
                }
            if vignette_helper_prompt is not None:
                row.vignette_helper_prompt = vignette_helper_prompt
            if vignette_prompt is not None:
                row.vignette_prompt = vignette_prompt
            row.updated_at = time.time()
            session.commit()

    def save_character(self, character: CharacterRecord) -> None:
        with self.Session() as session:
            session.merge(
                CharacterRow(
                    id=character.character_id,
                    user_id=character.user_id,
                    name=character.name,
                    character_type=character.character_type,
                    attributes=character.attributes,
                    appearance_description=character.appearance_description,
                )
            )
            session.commit()

    def get_characters(
        self, character_ids: Iterable[str], user_id: str
    ) -> List[CharacterRecord]:
        ids = list(character_ids)
        if not ids:
            return []
        with self.Session() as session:
            rows = session.execute(
                select(CharacterRow).where(
                    CharacterRow.id.in_(ids), CharacterRow.user_id == user_id
                )
            ).scalars()
            by_id = {row.id: self._to_character_record(row) for row in rows}
        return [by_id[character_id] for character_id in ids if character_id in by_id]

    def link_story_characters(
        self, story_id: str, character_ids: Iterable[str]
    ) -> None:
        with self.Session() as session:
            for character_id in character_ids:
                session.merge(
                    StoryCharacterRow(story_id=story_id, character_id=character_id)
                )
            session.commit()

    def get_story_characters(self, story_id: str) -> List[CharacterRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(CharacterRow)
                .join(
                    StoryCharacterRow,
                    StoryCharacterRow.character_id == CharacterRow.id,
                )
                .where(StoryCharacterRow.story_id == story_id)
                .order_by(CharacterRow.name.asc())
            ).scalars()
            return [self._to_character_record(row) for row in rows]

    def record_panels(
        self, story_id: str, panorama: Panorama, panels: List[Panel]
    ) -> None:
        _check_panel_set(story_id, panorama, panels)
        with self.Session() as session:
            # One transaction: an exception before commit rolls everything back
            session.execute(delete(PanelRow).where(PanelRow.story_id == story_id))
            session.merge(
                PanoramaRow(
                    story_id=story_id,
                    image_url=panorama.image_url,
                    storage_path=panorama.storage_path,
                    generation_id=panorama.generation_id,
                    created_at=panorama.created_at,
                )
            )
            session.add_all(
                [
                    PanelRow(
                        story_id=story_id,
                        panel_index=panel.index,
                        image_url=panel.image_url,
                        storage_path=panel.storage_path,
                        generation_id=panel.generation_id,
                        created_at=panel.created_at,
                    )
                    for panel in panels
                ]
            )
            session.commit()

    def clear_panels(self, story_id: str) -> None:
        with self.Session() as session:
            session.execute(delete(PanelRow).where(PanelRow.story_id == story_id))
            session.execute(
                delete(PanoramaRow).where(PanoramaRow.story_id == story_id)
            )
            session.commit()

    def get_panels(self, story_id: str) -> List[Panel]:
        with self.Session() as session:
            rows = session.execute(
                select(PanelRow)
                .where(PanelRow.story_id == story_id)
                .order_by(PanelRow.panel_index.asc())
            ).scalars()
            return [
                Panel(
                    story_id=row.story_id,
                    index=row.panel_index,
                    image_url=row.image_url,
                    storage_path=row.storage_path,
                    generation_id=row.generation_id,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    def get_panorama(self, story_id: str) -> Optional[Panorama]:
        with self.Session() as session:
            row = session.get(PanoramaRow, story_id)
            if not row:
                return None
            return Panorama(
                story_id=row.story_id,
                image_url=row.image_url,
                storage_path=row.storage_path,
                generation_id=row.generation_id,
                created_at=row.created_at,
            )


Base = declarative_base()


class StoryRow(Base):
    __tablename__ = "content"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    content_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False, default="")
    theme = Column(String, nullable=True)
    generation_metadata = Column(JSON, nullable=False, default=dict)
    vignette_helper_prompt = Column(Text, nullable=True)
    vignette_prompt = Column(Text, nullable=True)
    panel_count = Column(Integer, nullable=False, default=PANEL_COUNT)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class CharacterRow(Base):
    __tablename__ = "character_profiles"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    character_type = Column(String, nullable=False)
    attributes = Column(JSON, nullable=False, default=dict)
    appearance_description = Column(Text, nullable=True)


class StoryCharacterRow(Base):
    __tablename__ = "content_characters"

    story_id = Column(String, primary_key=True)
    character_id = Column(String, primary_key=True)


class PanelRow(Base):
    __tablename__ = "vignette_panels"

    story_id = Column(String, primary_key=True)
    panel_index = Column(Integer, primary_key=True)
    image_url = Column(String, nullable=False)
    storage_path = Column(String, nullable=False)
    generation_id = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class PanoramaRow(Base):
    __tablename__ = "vignette_panoramas"

    story_id = Column(String, primary_key=True)
    image_url = Column(String, nullable=False)
    storage_path = Column(String, nullable=False)
    generation_id = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
