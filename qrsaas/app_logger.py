import logging

from qrsaas.config import LOG_LEVEL


def setup_logging() -> logging.Logger:
    """Garante o logger 'qrsaas' sem mexer no root.

    Quem roda a aplicação (main.py, pytest) decide os handlers; aqui só
    um NullHandler para evitar avisos quando usado como biblioteca.
    """
    logger = logging.getLogger("qrsaas")
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if not any(isinstance(h, logging.NullHandler) for h in logger.handlers):
        logger.addHandler(logging.NullHandler())
    logger.propagate = True
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    base = logging.getLogger("qrsaas")
    return base.getChild(name) if name else base


logger = setup_logging()
