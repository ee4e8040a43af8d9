import io
import zipfile

import pytest

DEMO_FILES = {
    "index.html": "<!doctype html><div id=root></div>",
    "package.json": '{"name": "demo", "scripts": {"dev": "vite"}}',
    "vite.config.ts": "export default {}",
    "src/main.ts": "console.log('hi')",
}


def _build_zip(files: dict[str, str | bytes], dirs: tuple[str, ...] = ()) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name in dirs:
            zf.writestr(zipfile.ZipInfo(name.rstrip("/") + "/"), b"")
        for name, content in files.items():
            zf.writestr(name, content)
    return buf.getvalue()


@pytest.fixture
def build_zip():
    return _build_zip


@pytest.fixture
def demo_files() -> dict[str, str]:
    return dict(DEMO_FILES)


@pytest.fixture
def demo_zip() -> bytes:
    return _build_zip(DEMO_FILES, dirs=("src/",))
