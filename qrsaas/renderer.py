from io import BytesIO
from pathlib import Path
from uuid import uuid4

import qrcode
from qrcode.exceptions import DataOverflowError

from qrsaas.app_logger import get_logger
from qrsaas.config import STORAGE_DIR
from qrsaas.errors import RenderFailed

logger = get_logger("renderer")

ERROR_MAP = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}


class QRImageRenderer:
    """Gera os PNGs dos QR Codes e grava no diretório servido em /static.

    ``options`` é qualquer objeto com ``error_correction``, ``box_size``,
    ``border``, ``fill_color`` e ``back_color`` (o schema de customização
    ou o próprio registro).
    """

    def __init__(self, storage_dir: Path = STORAGE_DIR, url_prefix: str = "/static"):
        self.storage_dir = Path(storage_dir)
        self.url_prefix = url_prefix.rstrip("/")

    def render(self, data: str, options) -> bytes:
        try:
            qr = qrcode.QRCode(
                version=None,
                error_correction=ERROR_MAP[options.error_correction],
                box_size=options.box_size,
                border=options.border,
            )
            qr.add_data(data)
            qr.make(fit=True)
            imagem = qr.make_image(fill_color=options.fill_color, back_color=options.back_color)
            buffer = BytesIO()
            imagem.save(buffer, format="PNG")
        except (DataOverflowError, KeyError, ValueError, OSError) as exc:
            logger.error("Falha ao renderizar QR Code: %s", exc)
            raise RenderFailed() from exc
        return buffer.getvalue()

    def save(self, data: str, options) -> tuple[str, str]:
        """Gera a imagem e retorna (caminho absoluto, URL pública)."""
        content = self.render(data, options)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{uuid4().hex}.png"
        filepath = self.storage_dir / filename
        try:
            filepath.write_bytes(content)
        except OSError as exc:
            logger.error("Falha ao gravar %s: %s", filepath, exc)
            raise RenderFailed() from exc
        return str(filepath), f"{self.url_prefix}/{filename}"

    def discard(self, path: str) -> None:
        if path:
            Path(path).unlink(missing_ok=True)


_default_renderer = QRImageRenderer()


def get_renderer() -> QRImageRenderer:
    """Dependency do FastAPI; os testes trocam por um renderer em tmp."""
    return _default_renderer
