import random
import string
from typing import Callable, Optional

from qrsaas.app_logger import get_logger
from qrsaas.errors import AllocationExhausted

logger = get_logger("allocator")

SHORT_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHORT_CODE_LENGTH = 6
MAX_ATTEMPTS = 10

_system_random = random.SystemRandom()


def generate_short_code(rng: Optional[random.Random] = None, length: int = SHORT_CODE_LENGTH) -> str:
    rng = rng or _system_random
    return "".join(rng.choice(SHORT_CODE_ALPHABET) for _ in range(length))


def allocate_short_code(
    exists: Callable[[str], bool],
    rng: Optional[random.Random] = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> str:
    """Sorteia códigos até achar um que ``exists`` não conheça.

    A checagem é só uma otimização: o índice único do banco continua sendo
    quem garante a unicidade (ver ``QRRecordStore.create``).
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_short_code(rng)
        if not exists(code):
            return code
        logger.debug("Colisão de código curto %s (tentativa %d)", code, attempt)

    logger.error("Nenhum código curto livre após %d tentativas", max_attempts)
    raise AllocationExhausted()


def is_valid_short_code(code: str) -> bool:
    return len(code) == SHORT_CODE_LENGTH and all(c in SHORT_CODE_ALPHABET for c in code)
