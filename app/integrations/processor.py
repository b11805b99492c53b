"""
Downstream processing of ingested items.

Turns a normalized item into the records the coaching product reads:
a Capture for every item, Memories for AI context and ProjectTasks for
actionable items.
"""
import uuid
from typing import Dict, List, Optional, Protocol

from sqlmodel import select

from app.core.session_utils import SessionLike, _commit, _exec, _flush
from app.integrations.types import ProcessResult, StandardIngestItem
from app.models.capture import Capture, Memory, ProjectTask
from app.models.enums import CaptureType, IngestItemType, TaskPriority, TaskStatus, enum_value

DEFAULT_MEMORY_CONFIDENCE = 70

INGEST_TO_CAPTURE_TYPE: Dict[IngestItemType, CaptureType] = {
    IngestItemType.NOTE: CaptureType.NOTE,
    IngestItemType.HIGHLIGHT: CaptureType.NOTE,
    IngestItemType.MEETING: CaptureType.NOTE,
    IngestItemType.TASK: CaptureType.TASK,
    IngestItemType.MESSAGE: CaptureType.NOTE,
    IngestItemType.ARTICLE: CaptureType.RESOURCE,
    IngestItemType.BOOKMARK: CaptureType.RESOURCE,
    IngestItemType.DOCUMENT: CaptureType.NOTE,
    IngestItemType.EMAIL: CaptureType.NOTE,
    IngestItemType.COMMENT: CaptureType.NOTE,
    IngestItemType.ISSUE: CaptureType.TASK,
    IngestItemType.CLIP: CaptureType.RESOURCE,
}

MEMORY_CATEGORY_BY_TYPE: Dict[IngestItemType, str] = {
    IngestItemType.NOTE: "notes",
    IngestItemType.HIGHLIGHT: "reading_highlights",
    IngestItemType.MEETING: "meetings",
    IngestItemType.TASK: "tasks",
    IngestItemType.MESSAGE: "communication",
    IngestItemType.ARTICLE: "reading",
    IngestItemType.BOOKMARK: "resources",
    IngestItemType.DOCUMENT: "documents",
    IngestItemType.EMAIL: "communication",
    IngestItemType.COMMENT: "communication",
    IngestItemType.ISSUE: "tasks",
    IngestItemType.CLIP: "web_clips",
}

_TASK_TYPES = (IngestItemType.TASK, IngestItemType.ISSUE)


class ItemProcessor(Protocol):
    """Anything that can turn an ingested item into downstream records."""

    async def process(self, user_id: uuid.UUID, item: StandardIngestItem) -> ProcessResult:
        ...


def build_capture_content(item: StandardIngestItem) -> str:
    content = item.content
    if item.title and not content.startswith(item.title):
        content = f"{item.title}\n\n{content}"
    attribution = f"\n\n---\nSource: {enum_value(item.source_provider)}"
    if item.source_url:
        attribution += f" | {item.source_url}"
    return content + attribution


def generate_memories(item: StandardIngestItem) -> List[dict]:
    """Memory candidates for an item as dicts of key, value, category, confidence."""
    memories: List[dict] = []
    provider = enum_value(item.source_provider)
    item_type = IngestItemType(item.type)

    if item.summary:
        memories.append({
            "key": f"{provider}_{item_type.value}_{item.source_id}",
            "value": item.summary,
            "category": MEMORY_CATEGORY_BY_TYPE.get(item_type, "general"),
            "confidence": 80,
        })

    if item_type == IngestItemType.MEETING:
        if item.title:
            memories.append({
                "key": f"meeting_{item.source_id}",
                "value": f"Meeting: {item.title}. {item.summary or item.content[:200]}",
                "category": "meetings",
                "confidence": 85,
            })
    elif item_type == IngestItemType.HIGHLIGHT:
        memories.append({
            "key": f"highlight_{item.source_id}",
            "value": item.content,
            "category": "reading_highlights",
            "confidence": 90,
        })
    elif item_type in _TASK_TYPES:
        if item.title:
            memories.append({
                "key": f"task_{item.source_id}",
                "value": f"Task: {item.title}",
                "category": "tasks",
                "confidence": 85,
            })
    elif item_type in (IngestItemType.BOOKMARK, IngestItemType.ARTICLE):
        if item.title and item.source_url:
            memories.append({
                "key": f"resource_{item.source_id}",
                "value": f"Saved: {item.title} - {item.source_url}",
                "category": "resources",
                "confidence": 75,
            })

    if item.metadata.tags:
        memories.append({
            "key": f"tags_{item.source_id}",
            "value": f"Tagged with: {', '.join(item.metadata.tags)}",
            "category": "tags",
            "confidence": 80,
        })

    return memories


def should_extract_tasks(item: StandardIngestItem) -> bool:
    return IngestItemType(item.type) in _TASK_TYPES or item.processing_hints.extract_tasks


class IngestionProcessor:
    """Default ItemProcessor backed by the capture, memory and task tables."""

    def __init__(self, session: SessionLike):
        self.session = session

    async def process(self, user_id: uuid.UUID, item: StandardIngestItem) -> ProcessResult:
        result = ProcessResult()
        project_id = self._project_id(item)

        capture = Capture(
            user_id=user_id,
            type=INGEST_TO_CAPTURE_TYPE.get(IngestItemType(item.type), CaptureType.NOTE).value,
            content=build_capture_content(item),
            source=enum_value(item.source_provider),
            project_id=project_id,
        )
        self.session.add(capture)
        result.capture_id = capture.id

        if item.processing_hints.extract_memories:
            for memory in generate_memories(item):
                stored = await self._upsert_memory(user_id, item, memory)
                result.memory_ids.append(stored.id)

        if should_extract_tasks(item):
            task = ProjectTask(
                user_id=user_id,
                project_id=project_id,
                title=(item.title or item.content[:100])[:255],
                description=item.content,
                status=TaskStatus.BACKLOG.value,
                priority=self._task_priority(item).value,
                ai_suggested=True,
                ai_rationale=f"Imported from {enum_value(item.source_provider)}",
            )
            self.session.add(task)
            result.task_ids.append(task.id)

        await _commit(self.session)
        return result

    async def _upsert_memory(self, user_id: uuid.UUID, item: StandardIngestItem, memory: dict) -> Memory:
        statement = select(Memory).where(Memory.user_id == user_id).where(Memory.key == memory["key"])
        stored = (await _exec(self.session, statement)).first()
        source = f"{enum_value(item.source_provider)}:{item.source_id}"
        if stored is None:
            stored = Memory(
                user_id=user_id,
                key=memory["key"],
                value=memory["value"],
                category=memory["category"],
                source=source,
                confidence=memory.get("confidence", DEFAULT_MEMORY_CONFIDENCE),
            )
        else:
            stored.value = memory["value"]
            stored.category = memory["category"]
            stored.source = source
            stored.confidence = memory.get("confidence", DEFAULT_MEMORY_CONFIDENCE)
            stored.touch()
        self.session.add(stored)
        # Two memories of one item may share a key; make the first visible to the second lookup
        await _flush(self.session)
        return stored

    @staticmethod
    def _task_priority(item: StandardIngestItem) -> TaskPriority:
        hint = item.processing_hints.priority
        if not hint:
            return TaskPriority.MEDIUM
        return TaskPriority(enum_value(hint))

    @staticmethod
    def _project_id(item: StandardIngestItem) -> Optional[uuid.UUID]:
        link = item.processing_hints.link_to_project
        if not link:
            return None
        try:
            return uuid.UUID(str(link))
        except ValueError:
            return None
