"""Build the landing site from ``site/src`` into ``site/dist``.

Usage::

    python -m landing.static_build [clean|html|css|js|images|fonts|build|watch|serve|dev]

``build`` cleans the output tree and runs every transform. ``dev`` (the
default) builds, then watches the sources and serves the output tree. Set
``LANDING_HASH_ASSETS=true`` to add content hashes to stylesheet and script
filenames. The markup task then runs after them and rewrites references.
"""

from __future__ import annotations

import argparse
import glob
import logging
import os
import re
import shutil
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Tuple

import rcssmin
import rjsmin
import sass
from PIL import Image

from landing.assets import add_hash, update_html_references, write_manifest

logger = logging.getLogger(__name__)


def _env(name: str, default: str | None = None) -> str | None:
    """Fetch settings using ``build.foo`` style names (``BUILD__FOO``)."""

    return os.getenv(name.replace(".", "__").upper(), default)


def _flag(value: str | None) -> bool:
    return (value or "").lower() in ("1", "true", "yes")


SRC_DIR = _env("build.src_dir", os.path.join("site", "src"))
DIST_DIR = _env("build.dist_dir", os.path.join("site", "dist"))

# Source globs relative to the source tree, per task.
PATHS: Dict[str, Tuple[str, ...]] = {
    "html": ("**/*.html",),
    "css": ("scss/**/*.scss", "scss/**/*.css"),
    "js": ("js/**/*.js",),
    "images": ("images/**/*",),
    "fonts": ("fonts/**/*",),
}

VECTOR_EXTENSIONS = {".svg"}
MIN_SUFFIX = ".min"


class BuildContext:
    """State for one build invocation.

    ``manifest`` maps logical asset names to hashed output names. It is
    emptied by :func:`clean`, so entries never carry over between builds.
    """

    def __init__(
        self,
        src_dir: str | None = None,
        dist_dir: str | None = None,
        hash_assets: bool | None = None,
        notify: Callable[[List[str]], None] | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self.src_dir = src_dir or SRC_DIR
        self.dist_dir = dist_dir or DIST_DIR
        if hash_assets is None:
            hash_assets = _flag(os.getenv("LANDING_HASH_ASSETS"))
        self.hash_assets = hash_assets
        self.poll_interval = poll_interval if poll_interval is not None else float(
            _env("build.poll_interval", "1")
        )
        self.manifest: Dict[str, str] = {}
        self._notify = notify

    def sources(self, task: str) -> List[Tuple[str, str]]:
        """Return ``(path, rel_path)`` pairs for the files a task reads."""
        found = {}
        for pattern in PATHS[task]:
            for path in glob.glob(os.path.join(self.src_dir, pattern), recursive=True):
                if os.path.isfile(path):
                    found[path] = os.path.relpath(path, self.src_dir)
        return sorted(found.items())

    def notify(self, paths: List[str]) -> None:
        """Tell the live-reload hook about freshly written files."""
        if not paths:
            return
        if self._notify is not None:
            self._notify(paths)
        else:
            logger.debug("Reload: %s", ", ".join(paths))


# ---------------------------------------------------------------------------
# Task graph
# ---------------------------------------------------------------------------

class Task:
    """A named build step operating on a :class:`BuildContext`."""

    def __init__(self, name: str, func: Callable[..., None]) -> None:
        self.name = name
        self.func = func

    def __call__(self, ctx: BuildContext, **kwargs) -> None:
        logger.info("Starting '%s'...", self.name)
        started = time.monotonic()
        self.func(ctx, **kwargs)
        logger.info(
            "Finished '%s' after %.2fs", self.name, time.monotonic() - started
        )

    def __repr__(self) -> str:
        return f"<Task {self.name}>"


def series(*tasks: Task, name: str | None = None) -> Task:
    """Run ``tasks`` one after another, stopping at the first failure."""

    def run(ctx: BuildContext) -> None:
        for task in tasks:
            task(ctx)

    return Task(name or "<series>", run)


def parallel(*tasks: Task, name: str | None = None) -> Task:
    """Run ``tasks`` concurrently and re-raise the first failure."""

    def run(ctx: BuildContext) -> None:
        with ThreadPoolExecutor(max_workers=len(tasks)) as pool:
            futures = [pool.submit(task, ctx) for task in tasks]
        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]

    return Task(name or "<parallel>", run)


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------

# Elements whose bodies are emitted untouched by :func:`minify_html`.
_RAW_TEXT = re.compile(
    r"(<(script|style|pre|textarea)\b[^>]*>.*?</\2\s*>)", re.S | re.I
)
_COMMENT = re.compile(r"<!--.*?-->", re.S)
_BETWEEN_TAGS = re.compile(r">\s+<")
_WHITESPACE = re.compile(r"\s+")


def _collapse(markup: str) -> str:
    markup = _COMMENT.sub("", markup)
    markup = _BETWEEN_TAGS.sub("><", markup)
    return _WHITESPACE.sub(" ", markup)


def minify_html(content: str) -> str:
    """Strip comments and collapse whitespace outside raw-text elements.

    ``<script>``, ``<style>``, ``<pre>`` and ``<textarea>`` keep their bodies
    byte for byte; only the markup around them is collapsed.
    """

    parts = _RAW_TEXT.split(content)
    # split() yields text, element, tag name, text, element, tag name, ...
    last = len(parts) - 1
    out = []
    for i in range(0, len(parts), 3):
        text = _collapse(parts[i])
        if i > 0:
            # the preceding element ends with ">"
            text = re.sub(r"^\s+(?=<|$)", "", text)
        if i < last:
            # the following element starts with "<"
            text = re.sub(r"(?:(?<=>)|^)\s+$", "", text)
        out.append(text)
        if i < last:
            out.append(parts[i + 1])
    return "".join(out).strip()


def _write(path: str, content: bytes | str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    mode = "wb" if isinstance(content, bytes) else "w"
    with open(path, mode) as f:
        f.write(content)
    return path


def _min_name(rel_path: str, ext: str) -> str:
    base, _ = os.path.splitext(rel_path)
    return f"{base}{MIN_SUFFIX}{ext}".replace(os.sep, "/")


def _clean(ctx: BuildContext) -> None:
    if os.path.isdir(ctx.dist_dir):
        shutil.rmtree(ctx.dist_dir)
    ctx.manifest.clear()


def _html(ctx: BuildContext) -> None:
    written = []
    for path, rel_path in ctx.sources("html"):
        with open(path) as f:
            content = minify_html(f.read())
        if ctx.hash_assets:
            content = update_html_references(content, ctx.manifest)
        written.append(_write(os.path.join(ctx.dist_dir, rel_path), content))
    ctx.notify(written)


def compile_stylesheet(path: str) -> Tuple[str, str | None]:
    """Return ``(css, source_map)`` for ``path``.

    SCSS is compiled by libsass in compressed style, so the map still lines
    up after rcssmin. Plain CSS has no map.
    """

    if path.endswith(".scss"):
        return sass.compile(
            filename=path,
            include_paths=[os.path.dirname(path)],
            output_style="compressed",
            source_map_filename=os.path.basename(path) + ".map",
            source_map_contents=True,
            omit_source_map_url=True,
        )
    with open(path) as f:
        return f.read(), None


def _css(ctx: BuildContext) -> None:
    written = []
    for path, rel_path in ctx.sources("css"):
        if os.path.basename(path).startswith("_"):
            continue
        try:
            compiled, source_map = compile_stylesheet(path)
        except sass.CompileError as exc:
            logger.error("Stylesheet %s failed to compile: %s", rel_path, exc)
            continue
        minified = rcssmin.cssmin(compiled)
        out_name = _min_name(os.path.relpath(path, os.path.join(ctx.src_dir, "scss")), ".css")
        if ctx.hash_assets:
            out_name = add_hash(ctx, out_name, minified)
        dest = os.path.join(ctx.dist_dir, "css", out_name)
        if source_map:
            written.append(_write(dest + ".map", source_map))
            minified += f"/*# sourceMappingURL={os.path.basename(dest)}.map */"
        written.append(_write(dest, minified))
    ctx.notify(written)


def _js(ctx: BuildContext) -> None:
    written = []
    for path, _ in ctx.sources("js"):
        with open(path) as f:
            minified = rjsmin.jsmin(f.read())
        out_name = _min_name(os.path.relpath(path, os.path.join(ctx.src_dir, "js")), ".js")
        if ctx.hash_assets:
            out_name = add_hash(ctx, out_name, minified)
        written.append(_write(os.path.join(ctx.dist_dir, "js", out_name), minified))
    ctx.notify(written)


def _image_format(path: str) -> str | None:
    ext = os.path.splitext(path)[1].lower()
    return Image.registered_extensions().get(ext)


def optimize_image(src: str, dest: str) -> None:
    """Re-encode ``src`` into ``dest``, picking the format from the extension.

    Vector images and extensions Pillow cannot write are copied verbatim.
    """

    os.makedirs(os.path.dirname(dest) or ".", exist_ok=True)
    ext = os.path.splitext(src)[1].lower()
    fmt = None if ext in VECTOR_EXTENSIONS else _image_format(src)
    if fmt is None or fmt not in Image.SAVE:
        if ext not in VECTOR_EXTENSIONS:
            logger.debug("No optimizer for %s, copying", src)
        shutil.copyfile(src, dest)
        return
    options = {"optimize": True}
    if fmt == "JPEG":
        options["quality"] = 85
        options["progressive"] = True
    with Image.open(src) as img:
        if getattr(img, "is_animated", False):
            options["save_all"] = True
        img.save(dest, format=fmt, **options)


def _images(ctx: BuildContext) -> None:
    written = []
    for path, rel_path in ctx.sources("images"):
        dest = os.path.join(ctx.dist_dir, rel_path)
        optimize_image(path, dest)
        written.append(dest)
    ctx.notify(written)


def _fonts(ctx: BuildContext) -> None:
    written = []
    for path, rel_path in ctx.sources("fonts"):
        dest = os.path.join(ctx.dist_dir, rel_path)
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        shutil.copyfile(path, dest)
        written.append(dest)
    ctx.notify(written)


clean = Task("clean", _clean)
html = Task("html", _html)
css = Task("css", _css)
js = Task("js", _js)
images = Task("images", _images)
fonts = Task("fonts", _fonts)
manifest = Task("manifest", write_manifest)

WATCH_TASKS: Dict[str, Task] = {
    "html": html,
    "css": css,
    "js": js,
    "images": images,
    "fonts": fonts,
}


def build_graph(hash_assets: bool) -> Task:
    """Return the build task for the plain or the hashing variant."""
    if hash_assets:
        return series(
            clean,
            parallel(css, js, images, fonts),
            html,
            manifest,
            name="build",
        )
    return series(clean, parallel(html, css, js, images, fonts), name="build")


def _build(ctx: BuildContext) -> None:
    build_graph(ctx.hash_assets).func(ctx)


build = Task("build", _build)


# ---------------------------------------------------------------------------
# Development loop
# ---------------------------------------------------------------------------

def _snapshot(ctx: BuildContext, task: str) -> Dict[str, float]:
    return {path: os.path.getmtime(path) for path, _ in ctx.sources(task)}


def _watch(ctx: BuildContext, max_cycles: int | None = None) -> None:
    snapshots = {name: _snapshot(ctx, name) for name in WATCH_TASKS}
    logger.info("Watching %s", ctx.src_dir)
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        time.sleep(ctx.poll_interval)
        cycles += 1
        for name, task in WATCH_TASKS.items():
            current = _snapshot(ctx, name)
            if current == snapshots[name]:
                continue
            snapshots[name] = current
            try:
                task(ctx)
            except Exception:
                logger.exception("Task '%s' failed", name)


def _serve(ctx: BuildContext) -> None:
    from landing.app import create_app

    app = create_app(ctx.dist_dir)
    port = int(os.getenv("LANDING_PORT", "3000"))
    app.logger.info("Serving %s on http://localhost:%d", ctx.dist_dir, port)
    app.run(port=port, debug=False, use_reloader=False)


def _dev(ctx: BuildContext) -> None:
    build(ctx)
    # serve blocks on the main thread so Ctrl-C reaches it; the watcher
    # thread dies with the process.
    watcher = threading.Thread(target=watch, args=(ctx,), name="watch", daemon=True)
    watcher.start()
    serve(ctx)


watch = Task("watch", _watch)
serve = Task("serve", _serve)
dev = Task("dev", _dev)

TASKS: Dict[str, Task] = {
    task.name: task
    for task in (clean, html, css, js, images, fonts, build, watch, serve, dev)
}


def main(argv: Iterable[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("task", nargs="?", default="dev", choices=sorted(TASKS))
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=os.getenv("LANDING_LOG_LEVEL", "INFO").upper(),
        format="[%(levelname)s] %(message)s",
    )
    ctx = BuildContext()
    try:
        TASKS[args.task](ctx)
    except KeyboardInterrupt:
        logger.info("Stopped")
    except Exception:
        logger.exception("Task '%s' failed", args.task)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
