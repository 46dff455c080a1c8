# recorder.py
# =============================================================================
# 审计轨迹记录器 — 每个阶段追加一条不可变审计条目。
# / Audit trail recorder: one immutable audit entry appended per stage.
#
# 设计目标 / Design goals:
# 1. 只追加：条目创建后不再修改，时间戳单调不减。
#    / Append-only: entries are never mutated; timestamps never go backwards.
# 2. 脱敏：疑似密钥 / 提示词的键被遮盖，超长字符串被截断。
#    / Sanitised: secret-looking and prompt keys are redacted, long strings truncated.
# 3. 崩溃安全：JSON 存储使用临时文件 + 原子重命名，任意时刻文件都是合法 JSON。
#    / Crash-safe: the JSON store uses temp file + atomic rename; the file is always valid JSON.
# =============================================================================

"""审计轨迹记录器。 / Audit trail recorder."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import time
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from augur.primitives.models import AuditEntry

logger = logging.getLogger(__name__)

# 需要遮盖的键（子串匹配，不区分大小写） / Keys to redact (case-insensitive substring match)
_REDACT_KEY_PARTS = ("api_key", "apikey", "token", "secret", "password", "authorization", "prompt")
REDACTED = "[REDACTED]"
MAX_STRING_LENGTH = 2000
_MAX_DEPTH = 8


def sanitize_payload(value: Any, _depth: int = 0) -> Any:
    """把负载转换为可 JSON 序列化且已脱敏的结构。 / Convert a payload into a JSON-safe, redacted structure."""
    if _depth > _MAX_DEPTH:
        return "[TRUNCATED]"
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        out: Dict[str, Any] = {}
        for key, item in value.items():
            key = str(key)
            lowered = key.lower()
            if any(part in lowered for part in _REDACT_KEY_PARTS):
                out[key] = REDACTED
            else:
                out[key] = sanitize_payload(item, _depth + 1)
        return out
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_payload(item, _depth + 1) for item in value]
    if isinstance(value, str):
        if len(value) > MAX_STRING_LENGTH:
            return value[:MAX_STRING_LENGTH] + f"…[truncated {len(value) - MAX_STRING_LENGTH} chars]"
        return value
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return str(value)


# =============================================================================
# 审计存储 / Audit stores
# =============================================================================


class AuditStore(Protocol):
    """审计条目的外部存储。 / External sink for audit entries."""

    def append(self, run_id: str, entry: AuditEntry) -> None: ...

    def finalize(self, run_id: str, status: str, error: Optional[str] = None) -> None: ...


class InMemoryAuditStore:
    """进程内存储，主要用于测试与批量运行。 / In-process store, mainly for tests and batch runs."""

    def __init__(self) -> None:
        self._runs: Dict[str, Dict[str, Any]] = {}

    def _run(self, run_id: str) -> Dict[str, Any]:
        return self._runs.setdefault(run_id, {"entries": [], "status": "running", "error": None})

    def append(self, run_id: str, entry: AuditEntry) -> None:
        self._run(run_id)["entries"].append(entry)

    def finalize(self, run_id: str, status: str, error: Optional[str] = None) -> None:
        run = self._run(run_id)
        run["status"] = status
        run["error"] = error

    def entries(self, run_id: str) -> Tuple[AuditEntry, ...]:
        return tuple(self._runs.get(run_id, {}).get("entries", ()))

    def status(self, run_id: str) -> Optional[str]:
        run = self._runs.get(run_id)
        return run["status"] if run else None

    @property
    def run_ids(self) -> List[str]:
        return list(self._runs)


class JsonFileAuditStore:
    """每次运行一个 JSON 文件，每次追加立即刷盘。 / One JSON file per run, flushed on every append.

    输出 JSON 结构 / Output JSON structure:
        {
            "meta": { run_id, start_time, end_time, status, error },
            "entries": [ { stage, timestamp, duration, success, payload, errors }, ... ]
        }
    """

    def __init__(self, directory: Union[str, Path]):
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._data: Dict[str, Dict[str, Any]] = {}

    def path_for(self, run_id: str) -> Path:
        return self._dir / f"{run_id}.json"

    def _run(self, run_id: str) -> Dict[str, Any]:
        if run_id not in self._data:
            self._data[run_id] = {
                "meta": {
                    "run_id": run_id,
                    "start_time": datetime.now().isoformat(),
                    "end_time": None,
                    "status": "running",
                    "error": None,
                },
                "entries": [],
            }
        return self._data[run_id]

    def append(self, run_id: str, entry: AuditEntry) -> None:
        self._run(run_id)["entries"].append(entry.to_dict())
        self._flush(run_id)

    def finalize(self, run_id: str, status: str, error: Optional[str] = None) -> None:
        meta = self._run(run_id)["meta"]
        meta["end_time"] = datetime.now().isoformat()
        meta["status"] = status
        meta["error"] = error
        self._flush(run_id)
        logger.info(f"审计记录已写入: {self.path_for(run_id)} (status={status})")

    def _flush(self, run_id: str) -> None:
        """先写临时文件再原子重命名。写入失败仅记录日志。

        / Temp file then atomic rename. Write failures are only logged.
        """
        path = self.path_for(run_id)
        try:
            content = json.dumps(self._data[run_id], ensure_ascii=False, indent=2, default=str)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(content, encoding="utf-8")
            # 仅所有者可读写 / owner read/write only
            os.chmod(tmp_path, 0o600)
            tmp_path.replace(path)
        except OSError as e:
            logger.warning(f"审计记录写入失败（不影响分析流程）: {e}")


def load_audit_file(path: Union[str, Path]) -> Dict[str, Any]:
    """读取 JsonFileAuditStore 写出的原始文件。 / Read a raw file written by JsonFileAuditStore."""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_audit_trail(path: Union[str, Path]) -> List[AuditEntry]:
    """把审计文件回放为 AuditEntry 列表。 / Replay an audit file into AuditEntry objects."""
    data = load_audit_file(path)
    return [AuditEntry.from_dict(item) for item in data.get("entries", [])]


# =============================================================================
# 记录器 / Recorder
# =============================================================================


class AuditTrailRecorder:
    """单次分析的审计轨迹。 / Audit trail of one analysis run.

    条目按执行顺序追加；entries 返回只读元组。可选地把每条目转发给 AuditStore。
    / Entries are appended in execution order; ``entries`` is a read-only tuple.
      Each entry is optionally forwarded to an AuditStore.
    """

    def __init__(
        self,
        run_id: str,
        store: Optional[AuditStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._run_id = run_id
        self._store = store
        self._clock = clock
        self._entries: List[AuditEntry] = []
        self._status = "running"

    def record(
        self,
        stage: str,
        success: bool,
        payload: Optional[Dict[str, Any]] = None,
        errors: Sequence[str] = (),
        duration: float = 0.0,
    ) -> AuditEntry:
        """追加一条审计条目并返回。 / Append one audit entry and return it."""
        timestamp = self._clock()
        if self._entries and timestamp < self._entries[-1].timestamp:
            # 墙钟回拨时保持单调 / keep monotonic if the wall clock steps back
            timestamp = self._entries[-1].timestamp
        entry = AuditEntry(
            stage=stage,
            timestamp=timestamp,
            duration=max(0.0, duration),
            success=success,
            payload=sanitize_payload(payload or {}),
            errors=tuple(str(e) for e in errors),
        )
        self._entries.append(entry)
        logger.debug(f"[{self._run_id}] audit {stage} success={success}")
        if self._store is not None:
            try:
                self._store.append(self._run_id, entry)
            except Exception as e:
                logger.warning(f"[{self._run_id}] 审计存储追加失败: {e}")
        return entry

    def finalize(self, status: str = "completed") -> None:
        """标记分析完成。 / Mark the run complete."""
        self._close(status, None)

    def mark_failed(self, error: str) -> None:
        """标记分析失败，记录错误信息。 / Mark the run failed and record the error."""
        self._close("failed", error)

    def _close(self, status: str, error: Optional[str]) -> None:
        self._status = status
        if self._store is not None:
            try:
                self._store.finalize(self._run_id, status, error)
            except Exception as e:
                logger.warning(f"[{self._run_id}] 审计存储收尾失败: {e}")

    # -----------------------------------------------------------------
    # 属性访问 / Property access
    # -----------------------------------------------------------------

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def status(self) -> str:
        return self._status

    @property
    def entries(self) -> Tuple[AuditEntry, ...]:
        return tuple(self._entries)

    @property
    def stages(self) -> List[str]:
        return [e.stage for e in self._entries]
