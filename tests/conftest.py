import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root))

from landing.static_build import BuildContext  # noqa: E402


INDEX_HTML = """<!DOCTYPE html>
<html>
  <head>
    <!-- stylesheet -->
    <link rel="stylesheet" href="css/main.min.css">
  </head>
  <body>
    <img src="images/logo.svg">
    <script src="js/main.min.js"></script>
  </body>
</html>
"""

SVG = '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 1 1">  <rect width="1" height="1"/></svg>\n'


@pytest.fixture()
def site_tree(tmp_path):
    """A small source tree with one asset of every type."""
    src = tmp_path / "src"
    (src / "scss").mkdir(parents=True)
    (src / "js").mkdir()
    (src / "images").mkdir()
    (src / "fonts").mkdir()
    (src / "index.html").write_text(INDEX_HTML)
    (src / "scss" / "_vars.scss").write_text("$brand: #e4405f;\n")
    (src / "scss" / "main.scss").write_text(
        '@import "vars";\n\n.btn {\n  color: $brand;\n  .icon { width: 1em; }\n}\n'
    )
    (src / "js" / "main.js").write_text(
        "// entry point\nfunction greet(name) {\n    return 'hi ' + name;\n}\n"
    )
    (src / "images" / "logo.svg").write_text(SVG)
    (src / "fonts" / "brand.woff2").write_bytes(b"wOF2\x00\x01fontdata")
    return src


@pytest.fixture()
def ctx(site_tree, tmp_path):
    return BuildContext(
        src_dir=str(site_tree), dist_dir=str(tmp_path / "dist"), hash_assets=False
    )


@pytest.fixture()
def hashed_ctx(site_tree, tmp_path):
    return BuildContext(
        src_dir=str(site_tree), dist_dir=str(tmp_path / "dist"), hash_assets=True
    )
