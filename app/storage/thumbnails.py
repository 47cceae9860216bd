from typing import Tuple, Union
from pathlib import Path
from PIL import Image, ImageOps, UnidentifiedImageError
from ..core.logging import get_logger
from .files import file_lock

logger = get_logger(__name__)

THUMBNAIL_DIR = "thumbnails"
THUMBNAIL_SIZE: Tuple[int, int] = (100, 100)

# Formats Pillow can only write without an alpha channel or palette
_RGB_ONLY_FORMATS = {"JPEG", "PPM", "EPS"}


def _decode_locked(path: Path) -> Image.Image:
    """Fully decode the image while holding a shared lock on the file."""
    with open(path, "rb") as fh:
        with file_lock(fh, exclusive=False):
            img = Image.open(fh)
            img.load()
    return img


def make_thumbnail(file_path: Union[str, Path]) -> None:
    """Derive a 100x100 fill-cropped thumbnail into `thumbnails/` beside the file.

    Meant to run detached from the upload request: nothing is returned and
    every failure is logged and swallowed. Files that are not decodable images
    simply produce no thumbnail.
    """
    path = Path(file_path)
    logger.debug("make_thumbnail(%s) ...", path)

    try:
        img = _decode_locked(path)
    except UnidentifiedImageError:
        logger.info("skip thumbnail for %s: not a decodable image", path)
        return
    except OSError as e:
        logger.warning("I/O ERROR %r while reading image %s", str(e), path)
        return
    except Exception as e:
        logger.info("skip thumbnail for %s: %s", path, e)
        return

    try:
        thumb = ImageOps.fit(img, THUMBNAIL_SIZE, method=Image.Resampling.LANCZOS)
        target_dir = path.parent / THUMBNAIL_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / path.name

        fmt = Image.registered_extensions().get(path.suffix.lower())
        if fmt in _RGB_ONLY_FORMATS and thumb.mode not in ("RGB", "L", "CMYK"):
            thumb = thumb.convert("RGB")
        thumb.save(target, format=fmt)
    except Exception as e:
        logger.warning("ERROR %r while saving thumbnail for %s", str(e), path)
        return

    logger.debug("make_thumbnail(%s) => %s", path, target)
