from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SyncConfig:
    debounce_seconds: float = 1.0
    root_collection: str = "campaigns"
    chat_history_limit: int = 100
    local_state_key: str = "campaign_local_data"
    lore_volume_max_chars: int = 500_000
    lore_chunk_overhead_chars: int = 50
    lore_min_page_chars: int = 50
    lore_search_limit: int = 5
    default_grid_size: float = 5
