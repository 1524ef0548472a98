#!/usr/bin/env python3
import tempfile
import unittest
from unittest import mock
from pathlib import Path
import sys

from PIL import Image


SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) not in sys.path:
    sys.path.insert(0, str(SCRIPT_DIR))

import image_processing
from image_processing import TextureImage


def _write_image(path: Path, fmt: str, mode: str = "RGB") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, (4, 4), color=0).save(path, format=fmt)
    return path


class ScanDirForImagesTests(unittest.TestCase):
    def test_only_texture_types_sorted_by_extension_descending(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            for name in ("m/b.png", "m/a.png", "m/c.jpg", "m/d.tga", "m/e.txt", "m/f.dae"):
                target = root / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(b"")

            images = image_processing.scan_dir_for_images(root)

        self.assertEqual([image.path.name for image in images], ["d.tga", "a.png", "b.png", "c.jpg"])
        self.assertEqual(images[0].extension, "tga")


class TexturesDirForTests(unittest.TestCase):
    def test_uses_first_component_as_model(self) -> None:
        base = Path("some") / "random" / "path"
        result = image_processing.textures_dir_for(base / "foo_test" / "foo.jpg", base)
        self.assertEqual(result, base / "foo_test" / "materials" / "textures")

    def test_nested_image_still_uses_model_root(self) -> None:
        base = Path("root")
        result = image_processing.textures_dir_for(base / "model" / "deep" / "dir" / "foo.jpg", base)
        self.assertEqual(result, base / "model" / "materials" / "textures")

    def test_image_directly_under_root(self) -> None:
        base = Path("root")
        result = image_processing.textures_dir_for(base / "foo.jpg", base)
        self.assertEqual(result, base / "materials" / "textures")


class MoveToTexturesDirTests(unittest.TestCase):
    def test_moves_stray_texture(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = root / "model" / "foo.jpg"
            source.parent.mkdir(parents=True)
            source.write_bytes(b"data")

            moved = image_processing.move_to_textures_dir(TextureImage(source, "jpg"), root)

            self.assertEqual(moved.path, root / "model" / "materials" / "textures" / "foo.jpg")
            self.assertTrue(moved.path.exists())
            self.assertFalse(source.exists())

    def test_keeps_textures_and_meshes_in_place(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            for rel in ("model/materials/textures/a.jpg", "model/meshes/b.jpg"):
                path = root / rel
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(b"data")

                moved = image_processing.move_to_textures_dir(TextureImage(path, "jpg"), root)

                self.assertEqual(moved.path, path)
                self.assertTrue(path.exists())

    def test_existing_destination_is_not_overwritten(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = root / "model" / "foo.jpg"
            destination = root / "model" / "materials" / "textures" / "foo.jpg"
            destination.parent.mkdir(parents=True)
            source.write_bytes(b"new")
            destination.write_bytes(b"old")

            with self.assertRaises(FileExistsError):
                image_processing.move_to_textures_dir(TextureImage(source, "jpg"), root)

            self.assertEqual(destination.read_bytes(), b"old")
            self.assertTrue(source.exists())

    def test_dry_run_does_not_move(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            source = root / "model" / "foo.jpg"
            source.parent.mkdir(parents=True)
            source.write_bytes(b"data")

            moved = image_processing.move_to_textures_dir(TextureImage(source, "jpg"), root, dry_run=True)

            self.assertEqual(moved.path, source)
            self.assertFalse((root / "model" / "materials").exists())


class ConvertToPngTests(unittest.TestCase):
    def test_converts_a_jpg_to_png(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = _write_image(Path(temp_dir) / "example.jpg", "JPEG")

            outcome = image_processing.convert_to_png(TextureImage(source, "jpg"))

            self.assertTrue(outcome.converted)
            self.assertFalse(source.exists())
            self.assertEqual(outcome.image.path, Path(temp_dir) / "example.png")
            with Image.open(outcome.image.path) as converted:
                self.assertEqual(converted.format, "PNG")
                self.assertEqual(converted.size, (4, 4))

    def test_converts_palette_gif(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = _write_image(Path(temp_dir) / "example.gif", "GIF", mode="P")

            outcome = image_processing.convert_to_png(TextureImage(source, "gif"))

            self.assertTrue(outcome.converted)
            with Image.open(outcome.image.path) as converted:
                self.assertEqual(converted.mode, "RGBA")

    def test_rgba_copy_of_palette_image_is_closed(self) -> None:
        real_close = Image.Image.close
        closed_modes = []

        def recording_close(image):
            closed_modes.append(image.mode)
            return real_close(image)

        with tempfile.TemporaryDirectory() as temp_dir:
            source = _write_image(Path(temp_dir) / "example.gif", "GIF", mode="P")
            with mock.patch.object(Image.Image, "close", autospec=True, side_effect=recording_close):
                outcome = image_processing.convert_to_png(TextureImage(source, "gif"))

        self.assertTrue(outcome.converted)
        self.assertIn("RGBA", closed_modes)

    def test_skips_png_and_tif(self) -> None:
        for extension in ("png", "tif", "tiff"):
            with self.subTest(extension=extension):
                outcome = image_processing.convert_to_png(TextureImage(Path(f"missing.{extension}"), extension))
                self.assertFalse(outcome.converted)

    def test_skips_tiff_payload_behind_other_extension(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = _write_image(Path(temp_dir) / "sneaky.tga", "TIFF")

            outcome = image_processing.convert_to_png(TextureImage(source, "tga"))

            self.assertFalse(outcome.converted)
            self.assertTrue(source.exists())

    def test_existing_png_is_kept_unless_forced(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = _write_image(Path(temp_dir) / "example.jpg", "JPEG")
            existing = _write_image(Path(temp_dir) / "example.png", "PNG", mode="L")

            outcome = image_processing.convert_to_png(TextureImage(source, "jpg"))
            self.assertFalse(outcome.converted)
            self.assertTrue(source.exists())

            outcome = image_processing.convert_to_png(TextureImage(source, "jpg"), force=True)
            self.assertTrue(outcome.converted)
            self.assertFalse(source.exists())
            with Image.open(existing) as converted:
                self.assertEqual(converted.mode, "RGB")

    def test_non_image_raises_value_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = Path(temp_dir) / "README.jpg"
            source.write_text("not an image", encoding="utf-8")

            with self.assertRaises(ValueError):
                image_processing.convert_to_png(TextureImage(source, "jpg"))

            self.assertTrue(source.exists())
            self.assertFalse(source.with_suffix(".png").exists())

    def test_dry_run_keeps_source(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            source = _write_image(Path(temp_dir) / "example.tga", "TGA")

            outcome = image_processing.convert_to_png(TextureImage(source, "tga"), dry_run=True)

            self.assertTrue(outcome.converted)
            self.assertTrue(source.exists())
            self.assertFalse(source.with_suffix(".png").exists())


if __name__ == "__main__":
    unittest.main()
