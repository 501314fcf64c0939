"""Agent run history (.juggle/agent_history.jsonl)."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from ..models.run import AgentRunRecord

HISTORY_FILE = "agent_history.jsonl"


class AgentHistory:
    """Append-only record of finished agent runs."""

    def __init__(self, project_dir: str = ".", juggle_dir: str = ".juggle", logger=None):
        self.path = Path(project_dir).resolve() / juggle_dir / HISTORY_FILE
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logger or logging.getLogger("juggler")

    def append(self, record: AgentRunRecord) -> None:
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(record.to_dict(), ensure_ascii=False) + '\n')

    def load(self, session_id: Optional[str] = None, limit: Optional[int] = None) -> List[AgentRunRecord]:
        """
        Load run records, most recent first.

        Args:
            session_id: Only return runs of this session
            limit: Maximum number of records to return
        """
        if not self.path.exists():
            return []

        records = []
        with open(self.path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = AgentRunRecord.from_dict(json.loads(line))
                except (json.JSONDecodeError, TypeError) as e:
                    self.logger.warning(f"Skipping malformed history entry: {e}")
                    continue
                if session_id and record.session_id != session_id:
                    continue
                records.append(record)

        # ids are nanosecond timestamps
        records.sort(key=lambda r: int(r.id) if r.id.isdigit() else 0, reverse=True)
        if limit is not None:
            records = records[:limit]
        return records
