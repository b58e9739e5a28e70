"""Feature lifecycle management on top of the record store."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import (
    FEATURE_PRIORITIES,
    FILE_TYPES,
    Feature,
    FeaturePriority,
    FeatureStatus,
    FileAssociation,
    ProgressInfo,
    utc_now,
)
from .storage import StorageService
from .tdd_logging import (
    log_error_with_context,
    log_feature_created,
    log_feature_status_changed,
    log_operation,
)

DEFAULT_PROJECT_ID = "default-project"

NAME_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3
TAG_WEIGHT = 0.2
CRITERIA_WEIGHT = 0.1
REASON_THRESHOLD = 0.3


@dataclass(slots=True)
class SimilarFeature:
    """A feature scored against a free-text query."""

    feature: Feature
    similarity: float
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.feature.to_dict(),
            "similarity": round(self.similarity, 4),
            "reasons": list(self.reasons),
        }


def text_similarity(text: str, query: str, query_words: List[str]) -> float:
    """Score ``text`` against a query: whole-query hit is 1, otherwise word overlap."""
    if not text or not query:
        return 0.0
    if query in text:
        return 1.0
    if not query_words:
        return 0.0

    text_words = [word.lower() for word in text.split()]
    score = 0.0
    for query_word in query_words:
        if query_word in text_words:
            score += 1
        elif any(query_word in word or word in query_word for word in text_words):
            score += 0.7
    return min(score / len(query_words), 1.0)


def tag_similarity(tags: List[str], query_words: List[str]) -> float:
    if not tags or not query_words:
        return 0.0

    lowered = [tag.lower() for tag in tags]
    score = 0.0
    for query_word in query_words:
        if query_word in lowered:
            score += 1
        elif any(query_word in tag or tag in query_word for tag in lowered):
            score += 0.8
    return min(score / len(query_words), 1.0)


class FeatureManager:
    """Create, update, link and search features for a project."""

    def __init__(self, storage: Optional[StorageService] = None, *, base_path: Optional[Path] = None):
        self.storage = storage or StorageService()
        self.base_path = base_path
        self.current_project_id: Optional[str] = None
        self.logger = logging.getLogger("tdd_flow.features")

    def set_current_project(self, project_id: str) -> None:
        self.current_project_id = project_id

    def get_current_project(self) -> Optional[str]:
        return self.current_project_id

    # ------------------------------------------------------------------
    # Creation and updates
    # ------------------------------------------------------------------

    def create_feature(
        self,
        name: str,
        description: str,
        acceptance_criteria: List[str],
        *,
        priority: Optional[str] = None,
        project_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        estimated_hours: Optional[float] = None,
        assignee: Optional[str] = None,
    ) -> Feature:
        if not name or not name.strip():
            raise ValueError("Feature name cannot be empty")
        criteria = [c.strip() for c in (acceptance_criteria or []) if c and c.strip()]
        if not criteria:
            raise ValueError("Feature must have at least one acceptance criteria")
        if priority is not None and priority not in FEATURE_PRIORITIES:
            raise ValueError(f"Invalid priority: {priority}. Expected one of {', '.join(FEATURE_PRIORITIES)}")

        resolved_project = project_id or self.current_project_id or f"project-{int(time.time() * 1000)}"
        now = utc_now()
        feature = Feature(
            id=str(uuid.uuid4()),
            project_id=resolved_project,
            name=name.strip(),
            description=(description or "").strip(),
            status=FeatureStatus.PLANNING.value,
            priority=priority or FeaturePriority.MEDIUM.value,
            acceptance_criteria=criteria,
            created_at=now,
            updated_at=now,
            tags=[t.strip() for t in (tags or []) if t.strip()],
            estimated_hours=estimated_hours,
            assignee=assignee,
        )

        with log_operation("create_feature", project_id=resolved_project, feature_name=feature.name):
            self.storage.save_feature(feature)

        log_feature_created(feature.id, resolved_project, name=feature.name)
        return feature

    def update_feature_status(
        self,
        feature_id: str,
        status: str,
        *,
        progress: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> Feature:
        """Set a feature's status and merge a partial progress snapshot.

        Raises ValueError when the feature does not exist; nothing is written
        in that case.
        """
        if status not in {s.value for s in FeatureStatus}:
            raise ValueError(f"Invalid feature status: {status}")

        def apply(feature: Feature) -> None:
            feature.status = status
            if progress:
                existing = feature.progress or ProgressInfo()
                feature.progress = ProgressInfo(
                    tests_written=_pick(progress, "testsWritten", existing.tests_written),
                    tests_pass=_pick(progress, "testsPass", existing.tests_pass),
                    implementation_files=list(
                        _pick(progress, "implementationFiles", existing.implementation_files)
                    ),
                    coverage_percentage=_pick(progress, "coveragePercentage", existing.coverage_percentage),
                )

        try:
            updated = self.storage.update_feature(feature_id, apply)
        except ValueError as exc:
            log_error_with_context(exc, {"operation": "update_feature_status", "feature_id": feature_id})
            raise
        if updated is None:
            raise ValueError(f"Feature not found: {feature_id}")

        if notes:
            self.logger.info(f"Feature {feature_id} moved to {status}: {notes}")
        log_feature_status_changed(feature_id, status)
        return updated

    def link_feature_files(self, feature_id: str, file_paths: List[str], file_type: str) -> List[FileAssociation]:
        paths = [p.strip() for p in (file_paths or []) if p and p.strip()]
        if not paths:
            raise ValueError("At least one file path must be provided")
        if file_type not in FILE_TYPES:
            raise ValueError(f"Invalid file type: {file_type}. Expected one of {', '.join(FILE_TYPES)}")

        feature = self.storage.load_feature(feature_id)
        project_id = feature.project_id if feature else (self.current_project_id or DEFAULT_PROJECT_ID)

        associations: List[FileAssociation] = []
        now = utc_now()
        for file_path in paths:
            size, line_count = self._measure(file_path)
            association = FileAssociation(
                id=str(uuid.uuid4()),
                feature_id=feature_id,
                project_id=project_id,
                file_path=file_path,
                file_type=file_type,
                created_at=now,
                last_modified=now,
                size=size,
                line_count=line_count,
            )
            self.storage.save_file_association(association)
            associations.append(association)

        self.logger.info(f"Linked {len(associations)} {file_type} files to feature {feature_id}")
        return associations

    def _measure(self, file_path: str) -> tuple[int, Optional[int]]:
        candidate = Path(file_path).expanduser()
        if not candidate.is_absolute() and self.base_path is not None:
            candidate = self.base_path / candidate
        if not candidate.is_file():
            return 0, None
        try:
            content = candidate.read_bytes()
        except OSError as exc:
            self.logger.warning(f"Could not read {candidate} for size metadata: {exc}")
            return 0, None
        return len(content), content.count(b"\n") + (1 if content and not content.endswith(b"\n") else 0)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find_similar_features(
        self,
        query: str,
        project_id: Optional[str] = None,
        max_results: int = 10,
        min_similarity: float = 0.3,
    ) -> List[SimilarFeature]:
        target = project_id or self.current_project_id or DEFAULT_PROJECT_ID
        features = self.storage.list_features(target)

        query_lower = (query or "").lower().strip()
        query_words = [word for word in query_lower.split() if len(word) > 2]

        matches: List[SimilarFeature] = []
        for feature in features:
            score, reasons = self._score(feature, query_lower, query_words)
            if score >= min_similarity:
                matches.append(SimilarFeature(feature=feature, similarity=score, reasons=reasons))

        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches[:max_results]

    def _score(self, feature: Feature, query: str, query_words: List[str]) -> tuple[float, List[str]]:
        reasons: List[str] = []
        total = 0.0
        possible = 0.0

        name_score = text_similarity(feature.name.lower(), query, query_words)
        total += name_score * NAME_WEIGHT
        possible += NAME_WEIGHT
        if name_score > REASON_THRESHOLD:
            reasons.append(f"Name similarity: {name_score * 100:.1f}%")

        description_score = text_similarity(feature.description.lower(), query, query_words)
        total += description_score * DESCRIPTION_WEIGHT
        possible += DESCRIPTION_WEIGHT
        if description_score > REASON_THRESHOLD:
            reasons.append(f"Description similarity: {description_score * 100:.1f}%")

        if feature.tags:
            tag_score = tag_similarity(feature.tags, query_words)
            total += tag_score * TAG_WEIGHT
            possible += TAG_WEIGHT
            if tag_score > 0:
                reasons.append("Tag matches found")

        criteria_text = " ".join(feature.acceptance_criteria).lower()
        criteria_score = text_similarity(criteria_text, query, query_words)
        total += criteria_score * CRITERIA_WEIGHT
        possible += CRITERIA_WEIGHT
        if criteria_score > REASON_THRESHOLD:
            reasons.append(f"Acceptance criteria similarity: {criteria_score * 100:.1f}%")

        score = total / possible if possible else 0.0
        return min(score, 1.0), reasons

    def get_feature(self, feature_id: str) -> Optional[Feature]:
        return self.storage.load_feature(feature_id)

    def list_features(self, project_id: Optional[str] = None) -> List[Feature]:
        target = project_id or self.current_project_id
        if not target:
            raise ValueError("No project ID provided and no current project set")
        return self.storage.list_features(target)

    def delete_feature(self, feature_id: str) -> bool:
        return self.storage.delete_feature(feature_id)


def _pick(values: Dict[str, Any], key: str, default: Any) -> Any:
    value = values.get(key)
    return default if value is None else value
