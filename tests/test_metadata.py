import tempfile
import unittest
from pathlib import Path

from vision_kit.metadata import load_class_names


class TestLoadClassNames(unittest.TestCase):
    def _write(self, text: str) -> Path:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        path = Path(tmp.name) / "labels.txt"
        path.write_text(text, encoding="utf-8")
        return path

    def test_plain_text(self) -> None:
        path = self._write("person\n\n# comment\nbicycle\ncar\n")
        self.assertEqual(load_class_names(path), ["person", "bicycle", "car"])

    def test_names_mapping(self) -> None:
        path = self._write("path: data\nnames:\n  0: person\n  1: 'bicycle'\n  3: \"traffic light\"\n")
        self.assertEqual(load_class_names(path), ["person", "bicycle", "class_2", "traffic light"])

    def test_empty_mapping(self) -> None:
        path = self._write("names:\n")
        self.assertEqual(load_class_names(path), [])

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_class_names("does/not/exist.yaml")


if __name__ == "__main__":
    unittest.main()
