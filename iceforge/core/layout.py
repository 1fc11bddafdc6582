"""On-disk build layout.

Layout (relative to the project root)::

    {build_dir}/{profile}/obj/{subproject}/{path under src_dir}.o
    {build_dir}/{profile}/lib/lib{output_name}.a
    {build_dir}/{profile}/bin/{output_name}
"""

from __future__ import annotations

from pathlib import Path

from iceforge.models.project import BuildProfile


class BuildLayout:
    """Computes artifact paths for one project root and profile.

    Parameters
    ----------
    root:
        Project root directory.
    build_dir:
        Build output directory, relative to *root* unless absolute.
    profile:
        Active build profile; each profile gets its own output tree.
    """

    def __init__(self, root: Path, build_dir: Path, profile: BuildProfile) -> None:
        self.root = Path(root)
        self.profile = profile
        self.build_dir = Path(build_dir)
        self._profile_dir = self.build_dir / profile.value

    def rel(self, path: Path) -> Path:
        """Express *path* relative to the project root when it lies inside it."""
        path = Path(path)
        if not path.is_absolute():
            return path
        try:
            return path.relative_to(self.root)
        except ValueError:
            return path

    def absolute(self, path: Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.root / path

    def object_path(self, subproject: str, source: Path) -> Path:
        return self._profile_dir / "obj" / subproject / f"{source}.o"

    def library_path(self, output_name: str) -> Path:
        return self._profile_dir / "lib" / f"lib{output_name}.a"

    def binary_path(self, output_name: str) -> Path:
        return self._profile_dir / "bin" / output_name
