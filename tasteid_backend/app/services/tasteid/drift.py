# tasteid_backend/app/services/tasteid/drift.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from tasteid_backend.app.models.tasteid import (
    SIGNATURE_DIMENSIONS,
    DriftAlert,
    DriftKind,
    DriftState,
    ListeningSignature,
    Pattern,
    PatternBaseline,
    PatternStatus,
    RatingStyle,
)
from tasteid_backend.app.services.tasteid.config import DriftConfig, load_engine_config
from tasteid_backend.app.services.tasteid.errors import CorruptStateError

# Purpose:
# One-run lookback: compare this run's signature / rating style / patterns with
# the baseline the previous run persisted. Alerts are re-derived in full every
# run (start_run clears them); the current values become the next baseline.
# No baseline (first run, or corrupt state) → no alerts.

log = logging.getLogger("tasteid.drift")
if not log.handlers:
    handler = logging.StreamHandler()
    log.addHandler(handler)
    log.setLevel(logging.INFO)


def parse_drift_state(state: Any) -> DriftState:
    if state is None:
        return DriftState()
    if not isinstance(state, (dict, DriftState)):
        raise CorruptStateError("drift", f"expected an object, got {type(state).__name__}")
    try:
        return state if isinstance(state, DriftState) else DriftState.model_validate(state)
    except ValidationError as e:
        raise CorruptStateError("drift", str(e)) from e


class DriftDetector:
    def __init__(self, cfg: DriftConfig | None = None):
        self.cfg = cfg or load_engine_config().drift
        self.alerts: List[DriftAlert] = []
        self.previous_signature: Optional[ListeningSignature] = None
        self.previous_rating_style: Optional[RatingStyle] = None
        self.previous_patterns: Dict[str, PatternBaseline] = {}
        self.previous_event_count: int = 0
        self._as_of: Optional[datetime] = None
        # what to_json will persist as the next baseline (None = keep previous)
        self._current_signature: Optional[ListeningSignature] = None
        self._current_rating_style: Optional[RatingStyle] = None
        self._current_patterns: Optional[List[PatternBaseline]] = None
        self._current_event_count: Optional[int] = None

    # ----- persistence -----

    def load_from_json(self, state: Any) -> bool:
        try:
            ds = parse_drift_state(state)
        except CorruptStateError as e:
            log.warning(f"[drift] {e}; no baseline this run")
            ds = DriftState()
            ok = False
        else:
            ok = True
        self.alerts = list(ds.alerts)
        self.previous_signature = ds.previous_signature
        self.previous_rating_style = ds.previous_rating_style
        self.previous_patterns = {p.id: p for p in ds.previous_patterns}
        self.previous_event_count = ds.previous_event_count
        return ok

    def to_json(self) -> Dict[str, Any]:
        patterns = self._current_patterns
        if patterns is None:
            patterns = [self.previous_patterns[k] for k in sorted(self.previous_patterns)]
        return DriftState(
            alerts=self.get_all_alerts(),
            previous_signature=self._current_signature or self.previous_signature,
            previous_rating_style=self._current_rating_style or self.previous_rating_style,
            previous_patterns=patterns,
            previous_event_count=(
                self._current_event_count if self._current_event_count is not None else self.previous_event_count
            ),
        ).model_dump(mode="json")

    @property
    def has_baseline(self) -> bool:
        return (
            self.previous_signature is not None
            or self.previous_rating_style is not None
            or bool(self.previous_patterns)
        )

    # ----- run lifecycle -----

    def start_run(self, as_of: datetime) -> None:
        self._as_of = as_of
        self.alerts = []

    def _alert(self, kind: DriftKind, subject: str, severity: float, description: str,
               old_value: Any = None, new_value: Any = None, affected: Sequence[str] = ()) -> DriftAlert:
        alert = DriftAlert(
            id=f"{kind.value}:{subject}",
            kind=kind,
            severity=max(0.0, min(1.0, severity)),
            description=description,
            detected_at=self._as_of or datetime.now(timezone.utc),
            subject=subject,
            old_value=old_value,
            new_value=new_value,
            affected_patterns=list(affected),
        )
        self.alerts = [a for a in self.alerts if a.id != alert.id] + [alert]
        return alert

    # ----- detectors -----

    def detect_pattern_disappearance(self, patterns: Sequence[Pattern], total_event_count: int) -> List[DriftAlert]:
        current = {p.id: p for p in patterns}
        baseline: Dict[str, PatternBaseline] = {
            p.id: PatternBaseline(
                id=p.id, name=p.name, status=p.status, confidence=p.confidence,
                last_observed_event_count=p.last_observed_event_count,
            )
            for p in patterns
        }
        self._current_event_count = total_event_count

        out: List[DriftAlert] = []
        for pid in sorted(self.previous_patterns):
            prev = self.previous_patterns[pid]
            if prev.status != PatternStatus.CONFIRMED:
                continue
            now = current.get(pid)
            if now is not None and now.status != PatternStatus.FADED:
                continue
            last_seen = now.last_observed_event_count if now is not None else prev.last_observed_event_count
            since = total_event_count - last_seen
            if since < self.cfg.disappearance_min_new_events:
                # pending: the confirmed entry stays in the baseline until enough new ratings arrive
                baseline[pid] = prev
                continue
            new_state = "faded" if now is not None else "missing"
            out.append(self._alert(
                DriftKind.PATTERN_DISAPPEARED, pid, max(0.5, prev.confidence),
                f"{prev.name or pid} has not shown up in your last {since} ratings",
                old_value=prev.status.value, new_value=new_state, affected=[pid],
            ))
        self._current_patterns = [baseline[k] for k in sorted(baseline)]
        return out

    def detect_contradictions(self, patterns: Sequence[Pattern]) -> List[DriftAlert]:
        """Mutually exclusive pairs confirmed together this run but not in the baseline."""
        if not self.has_baseline:
            return []
        confirmed = {p.id: p for p in patterns if p.status == PatternStatus.CONFIRMED}
        prev_confirmed = {pid for pid, p in self.previous_patterns.items() if p.status == PatternStatus.CONFIRMED}
        out: List[DriftAlert] = []
        for a, b in self.cfg.contradictions:
            if a not in confirmed or b not in confirmed:
                continue
            if a in prev_confirmed and b in prev_confirmed:
                continue
            out.append(self._alert(
                DriftKind.CONTRADICTION, f"{a}+{b}",
                min(confirmed[a].confidence, confirmed[b].confidence),
                f"{confirmed[a].name} and {confirmed[b].name} are both confirmed",
                affected=[a, b],
            ))
        return out

    def detect_signature_drift(self, signature: ListeningSignature) -> List[DriftAlert]:
        prev = self.previous_signature
        self._current_signature = signature
        if prev is None:
            return []
        out: List[DriftAlert] = []
        old, new = prev.as_dict(), signature.as_dict()
        for dim in SIGNATURE_DIMENSIONS:
            diff = abs(new[dim] - old[dim])
            if diff <= self.cfg.signature_drift_threshold:
                continue
            direction = "increased" if new[dim] > old[dim] else "decreased"
            out.append(self._alert(
                DriftKind.SIGNATURE_DRIFT, dim, diff,
                f"{dim.replace('_', ' ').title()} {direction} by {diff * 100:.0f}%",
                old_value=old[dim], new_value=new[dim],
            ))
        return out

    def detect_rating_style_shift(self, rating_style: RatingStyle) -> List[DriftAlert]:
        prev = self.previous_rating_style
        self._current_rating_style = rating_style
        if prev is None:
            return []
        out: List[DriftAlert] = []
        if rating_style.skew != prev.skew:
            out.append(self._alert(
                DriftKind.RATING_STYLE_SHIFT, "skew", 0.5,
                f"Rating style moved from {prev.skew.value} to {rating_style.skew.value}",
                old_value=prev.skew.value, new_value=rating_style.skew.value,
            ))
        avg_diff = abs(rating_style.average - prev.average)
        if avg_diff > self.cfg.rating_average_delta:
            direction = "higher" if rating_style.average > prev.average else "lower"
            out.append(self._alert(
                DriftKind.RATING_STYLE_SHIFT, "average", avg_diff / 5.0,
                f"Rating {direction} on average ({prev.average:.1f} → {rating_style.average:.1f})",
                old_value=prev.average, new_value=rating_style.average,
            ))
        std_diff = abs(rating_style.std_dev - prev.std_dev)
        if std_diff > self.cfg.rating_std_dev_delta:
            direction = "wider" if rating_style.std_dev > prev.std_dev else "narrower"
            out.append(self._alert(
                DriftKind.RATING_STYLE_SHIFT, "std_dev", std_diff / 5.0,
                f"Rating spread got {direction} ({prev.std_dev:.2f} → {rating_style.std_dev:.2f})",
                old_value=prev.std_dev, new_value=rating_style.std_dev,
            ))
        return out

    # ----- views -----

    def get_all_alerts(self) -> List[DriftAlert]:
        ranked = sorted(self.alerts, key=lambda a: (-a.severity, a.id))
        return ranked[: self.cfg.max_alerts]

    def get_significant_drifts(self, limit: int = 5) -> List[DriftAlert]:
        return [a for a in self.get_all_alerts() if a.severity >= self.cfg.significant_severity][:limit]
