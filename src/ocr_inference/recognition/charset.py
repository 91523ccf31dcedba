"""Recognizer charset loading.

A charset file holds one symbol per line; blank lines are skipped. The
decoder maps class index ``i`` to ``charset[i]`` and treats the model's last
class as the CTC blank.
"""

import logging
from pathlib import Path
from typing import List, Union

from ..utils.logging import log_diagnostic

logger = logging.getLogger(__name__)

HIRAGANA = "あいうえおかきくけこさしすせそたちつてとなにぬねのはひふへほまみむめもやゆよらりるれろわをん"
KATAKANA = "アイウエオカキクケコサシスセソタチツテトナニヌネノハヒフヘホマミムメモヤユヨラリルレロワヲン"
DIGITS = "0123456789"
SYMBOLS = "、。！？（）「」【】〈〉《》・ー～￥円年月日時分秒"
ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


def default_charset() -> List[str]:
    """Built-in Japanese charset used when no charset file is available."""
    return list(HIRAGANA + KATAKANA + DIGITS + SYMBOLS + ALPHABET)


def parse_charset(text: str) -> List[str]:
    return [line.rstrip("\r") for line in text.split("\n") if line.strip()]


def load_charset(path: Union[str, Path]) -> List[str]:
    """Read a charset file, falling back to the built-in charset."""
    path = Path(path)
    try:
        charset = parse_charset(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        log_diagnostic(logger, "charset_fallback",
                       f"Could not read charset {path}: {e}; using built-in charset",
                       path=str(path))
        return default_charset()

    if not charset:
        log_diagnostic(logger, "charset_fallback",
                       f"Charset {path} is empty; using built-in charset", path=str(path))
        return default_charset()

    logger.info(f"Loaded charset with {len(charset)} symbols from {path}")
    return charset


__all__ = ["default_charset", "parse_charset", "load_charset"]
