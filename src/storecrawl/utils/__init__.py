"""
Utilities Package.

Provides block-page detection, human-like navigation pacing and the text
helpers used by site extractors.
"""

from .challenge_handler import (
    detect_block_page,
    is_block_status,
    BlockDetectionResult,
    BLOCK_INDICATORS,
    BLOCK_TEXT_PATTERNS,
    BLOCK_URL_PATTERNS,
    BLOCK_STATUS_CODES,
)

from .human_simulator import (
    HumanSimulator,
    HumanSimulatorConfig,
    create_human_simulator,
    create_human_simulator_from_thresholds,
)

from .text import (
    clean_text,
    extract_number,
    extract_rating,
    parse_date,
    resolve_url,
)

__all__ = [
    # Block detection
    "detect_block_page",
    "is_block_status",
    "BlockDetectionResult",
    "BLOCK_INDICATORS",
    "BLOCK_TEXT_PATTERNS",
    "BLOCK_URL_PATTERNS",
    "BLOCK_STATUS_CODES",
    # Human-like simulation
    "HumanSimulator",
    "HumanSimulatorConfig",
    "create_human_simulator",
    "create_human_simulator_from_thresholds",
    # Text helpers
    "clean_text",
    "extract_number",
    "extract_rating",
    "parse_date",
    "resolve_url",
]
