import json
import logging
import os
import threading
from pathlib import Path

import flask
import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from landing import static_build
from landing.static_build import (
    Task,
    build,
    clean,
    css,
    fonts,
    images,
    js,
    parallel,
    series,
)


def test_clean_removes_output_and_empties_manifest(ctx):
    os.makedirs(os.path.join(ctx.dist_dir, "css"))
    ctx.manifest["main.min.css"] = "main.min.0123abcd.css"

    clean(ctx)

    assert ctx.manifest == {}
    assert not os.path.exists(ctx.dist_dir)


def test_build_writes_every_asset_type(ctx):
    build(ctx)
    dist = Path(ctx.dist_dir)

    assert (dist / "index.html").exists()
    assert (dist / "css" / "main.min.css").exists()
    assert not (dist / "css" / "_vars.min.css").exists()
    assert (dist / "js" / "main.min.js").exists()
    assert (dist / "images" / "logo.svg").exists()
    assert (dist / "fonts" / "brand.woff2").read_bytes() == b"wOF2\x00\x01fontdata"
    assert ctx.manifest == {}
    assert not (dist / "manifest.json").exists()


def test_css_compiles_and_minifies(ctx):
    css(ctx)
    out = (Path(ctx.dist_dir) / "css" / "main.min.css").read_text()
    assert "#e4405f" in out
    assert ".btn .icon{width:1em}" in out
    assert "\n" not in out.strip()


def test_css_compile_error_is_logged_and_skipped(ctx, site_tree, caplog):
    (site_tree / "scss" / "broken.scss").write_text(".a { color: $missing; }\n")

    with caplog.at_level(logging.ERROR, logger="landing.static_build"):
        css(ctx)

    dist = Path(ctx.dist_dir) / "css"
    assert (dist / "main.min.css").exists()
    assert not (dist / "broken.min.css").exists()
    assert "broken.scss failed to compile" in caplog.text


def test_js_minified_with_suffix(ctx):
    js(ctx)
    out = (Path(ctx.dist_dir) / "js" / "main.min.js").read_text()
    assert "entry point" not in out
    assert out.startswith("function greet(name){")


def test_svg_copied_verbatim_and_png_reencoded(ctx, site_tree):
    png_path = site_tree / "images" / "photo.png"
    info = PngInfo()
    info.add_text("Comment", "x" * 200)
    Image.new("RGB", (16, 16), (200, 10, 10)).save(png_path, pnginfo=info)

    images(ctx)

    dist = Path(ctx.dist_dir) / "images"
    assert (dist / "logo.svg").read_bytes() == (site_tree / "images" / "logo.svg").read_bytes()
    assert (dist / "photo.png").read_bytes() != png_path.read_bytes()
    with Image.open(dist / "photo.png") as img:
        assert img.size == (16, 16)


def test_unknown_image_extension_copied(ctx, site_tree):
    (site_tree / "images" / "data.xyz").write_bytes(b"\x00\x01raw")
    images(ctx)
    assert (Path(ctx.dist_dir) / "images" / "data.xyz").read_bytes() == b"\x00\x01raw"


def test_transforms_notify_reload_hook(site_tree, tmp_path):
    seen = []
    ctx = static_build.BuildContext(
        src_dir=str(site_tree),
        dist_dir=str(tmp_path / "out"),
        hash_assets=False,
        notify=seen.append,
    )
    fonts(ctx)
    assert seen == [[os.path.join(ctx.dist_dir, "fonts", "brand.woff2")]]


def test_series_stops_at_first_failure(ctx):
    calls = []

    def boom(_):
        raise RuntimeError("boom")

    task = series(Task("a", lambda c: calls.append("a")), Task("b", boom), Task("c", lambda c: calls.append("c")))
    with pytest.raises(RuntimeError):
        task(ctx)
    assert calls == ["a"]


def test_parallel_runs_all_and_reraises(ctx):
    calls = []

    def boom(_):
        raise ValueError("bad asset")

    task = parallel(Task("a", lambda c: calls.append("a")), Task("b", boom), Task("c", lambda c: calls.append("c")))
    with pytest.raises(ValueError):
        task(ctx)
    assert sorted(calls) == ["a", "c"]


def test_hashing_variant_runs_markup_after_scripts(hashed_ctx, monkeypatch):
    order = []
    for name in ("clean", "html", "css", "js", "images", "fonts", "manifest"):
        monkeypatch.setattr(
            static_build, name, Task(name, lambda c, name=name: order.append(name))
        )

    static_build.build_graph(hash_assets=True)(hashed_ctx)

    assert order[0] == "clean"
    assert order[-2:] == ["html", "manifest"]
    assert sorted(order[1:5]) == ["css", "fonts", "images", "js"]


def test_hashed_build_is_repeatable(hashed_ctx):
    build(hashed_ctx)
    first = dict(hashed_ctx.manifest)
    build(hashed_ctx)
    assert hashed_ctx.manifest["main.min.css"] == first["main.min.css"]
    assert hashed_ctx.manifest["main.min.js"] == first["main.min.js"]
    css_files = [n for n in os.listdir(os.path.join(hashed_ctx.dist_dir, "css")) if n.endswith(".css")]
    assert css_files == [hashed_ctx.manifest["main.min.css"]]


def test_watch_reruns_only_changed_task(ctx, site_tree, monkeypatch):
    script = site_tree / "js" / "main.js"

    def fake_sleep(_):
        script.write_text("var changed = 1;\n")
        stat = script.stat()
        os.utime(script, (stat.st_atime, stat.st_mtime + 10))

    monkeypatch.setattr(static_build.time, "sleep", fake_sleep)

    static_build.watch(ctx, max_cycles=1)

    dist = Path(ctx.dist_dir)
    assert "var changed=1;" in (dist / "js" / "main.min.js").read_text()
    assert not (dist / "index.html").exists()
    assert not (dist / "css").exists()


def test_main_runs_named_task(monkeypatch, tmp_path):
    dist = tmp_path / "dist"
    dist.mkdir()
    monkeypatch.setattr(static_build, "DIST_DIR", str(dist))

    assert static_build.main(["clean"]) == 0
    assert not dist.exists()


def test_main_reports_failure(monkeypatch):
    def boom(_):
        raise RuntimeError("boom")

    monkeypatch.setitem(static_build.TASKS, "html", Task("html", boom))
    assert static_build.main(["html"]) == 1


def test_css_writes_source_map(ctx):
    css(ctx)
    dist = Path(ctx.dist_dir) / "css"

    out = (dist / "main.min.css").read_text()
    assert out.endswith("/*# sourceMappingURL=main.min.css.map */")
    source_map = json.loads((dist / "main.min.css.map").read_text())
    assert source_map["mappings"]
    assert any(src.endswith("main.scss") for src in source_map["sources"])


def test_hashed_css_map_follows_hashed_name(hashed_ctx):
    css(hashed_ctx)
    hashed = hashed_ctx.manifest["main.min.css"]
    dist = Path(hashed_ctx.dist_dir) / "css"
    assert (dist / f"{hashed}.map").exists()
    assert (dist / hashed).read_text().endswith(f"/*# sourceMappingURL={hashed}.map */")


def test_animated_gif_keeps_every_frame(ctx, site_tree):
    colours = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)]
    frames = [Image.new("RGB", (8, 8), c) for c in colours]
    frames[0].save(
        site_tree / "images" / "spin.gif",
        save_all=True,
        append_images=frames[1:],
        duration=100,
        loop=0,
    )

    images(ctx)

    with Image.open(Path(ctx.dist_dir) / "images" / "spin.gif") as img:
        assert img.n_frames == 4


def test_serve_runs_app_on_configured_port(ctx, monkeypatch):
    runs = []

    def fake_run(self, **kwargs):
        runs.append((self, kwargs))

    monkeypatch.setattr(flask.Flask, "run", fake_run)
    monkeypatch.setenv("LANDING_PORT", "4321")

    static_build.serve(ctx)

    app, kwargs = runs[0]
    assert app.static_folder == os.path.abspath(ctx.dist_dir)
    assert kwargs["port"] == 4321
    assert kwargs["use_reloader"] is False


def _fake_dev_tasks(monkeypatch, order):
    watching = threading.Event()

    def fake_watch(_):
        order.append("watch")
        watching.set()

    def fake_serve(_):
        watching.wait(5)
        order.append("serve")
        raise KeyboardInterrupt

    monkeypatch.setattr(static_build, "build", Task("build", lambda c: order.append("build")))
    monkeypatch.setattr(static_build, "watch", Task("watch", fake_watch))
    monkeypatch.setattr(static_build, "serve", Task("serve", fake_serve))


def test_dev_builds_then_watches_and_serves(ctx, monkeypatch):
    order = []
    _fake_dev_tasks(monkeypatch, order)

    with pytest.raises(KeyboardInterrupt):
        static_build.dev(ctx)

    assert order == ["build", "watch", "serve"]


def test_main_dev_stops_on_interrupt(monkeypatch):
    order = []
    _fake_dev_tasks(monkeypatch, order)

    assert static_build.main(["dev"]) == 0
    assert order == ["build", "watch", "serve"]
