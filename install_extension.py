#!/usr/bin/env python3
"""
Install (or remove) the embroidery output extension in Inkscape's user
extension directory and install its Python requirements.

Run this with the Python that Inkscape uses so ``inkex`` resolves in the
same environment the extension runs in.
"""

from __future__ import annotations

import argparse
import os
import platform
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

ROOT_DIR = Path(__file__).resolve().parent
EXTENSION_DIR = ROOT_DIR / "extensions"
REQUIREMENTS_FILE = ROOT_DIR / "requirements.txt"
INKSCAPE_PYTHON_ENV = "INKSCAPE_PYTHON"
EXTENSION_DIR_ENV = "INKSCAPE_EXTENSION_DIR"

# Bundled interpreters, relative to the Inkscape install root.
_BUNDLED_PYTHON: Dict[str, Sequence[str]] = {
    "windows": ("bin/python.exe",),
    "darwin": ("Contents/Resources/bin/python3", "Contents/Resources/bin/python"),
}


def extension_files(source_dir: Path = EXTENSION_DIR) -> List[Path]:
    """Every module and descriptor the extension needs at runtime."""
    files = sorted(source_dir.glob("embroidery_*.py")) + sorted(source_dir.glob("embroidery_*.inx"))
    return [path for path in files if path.is_file()]


def default_extension_dir(system: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    override = env.get(EXTENSION_DIR_ENV)
    if override:
        return Path(override).expanduser()

    system = (system or platform.system()).lower()
    home = Path.home()
    if system == "windows":
        base = Path(env["APPDATA"]) if env.get("APPDATA") else home / "AppData" / "Roaming"
        return base / "Inkscape" / "extensions"
    if system == "darwin":
        return home / "Library" / "Application Support" / "org.inkscape.Inkscape" / "config" / "inkscape" / "extensions"
    config = Path(env["XDG_CONFIG_HOME"]) if env.get("XDG_CONFIG_HOME") else home / ".config"
    return config / "inkscape" / "extensions"


def install_files(files: Sequence[Path], dest_dir: Path, dry_run: bool = False) -> List[Path]:
    if not files:
        raise FileNotFoundError(f"No embroidery_* extension files found in {EXTENSION_DIR}")
    if dry_run:
        print(f"[dry-run] Would create {dest_dir}")
    else:
        dest_dir.mkdir(parents=True, exist_ok=True)

    installed: List[Path] = []
    for src in files:
        dest = dest_dir / src.name
        if dry_run:
            print(f"[dry-run] Would copy {src.name} -> {dest}")
        else:
            shutil.copy2(src, dest)
            print(f"Copied {src.name} -> {dest}")
        installed.append(dest)
    return installed


def remove_files(names: Sequence[str], dest_dir: Path, dry_run: bool = False) -> List[Path]:
    removed: List[Path] = []
    for name in names:
        target = dest_dir / name
        if not target.exists():
            continue
        if dry_run:
            print(f"[dry-run] Would remove {target}")
        else:
            target.unlink()
            print(f"Removed {target}")
        removed.append(target)
    return removed


def pip_install_command(python_exe: str) -> List[str]:
    return [python_exe, "-m", "pip", "install", "-r", str(REQUIREMENTS_FILE)]


def run_pip_install(python_exe: str, dry_run: bool) -> None:
    if not REQUIREMENTS_FILE.exists():
        print("No requirements.txt found; skipping pip install.")
        return
    cmd = pip_install_command(python_exe)
    if dry_run:
        print(f"[dry-run] Would run: {' '.join(cmd)}")
        return
    try:
        subprocess.check_call(cmd)
    except subprocess.CalledProcessError as exc:
        if platform.system().lower() == "darwin" and exc.returncode == -9:
            print("pip was killed (SIGKILL); Gatekeeper may be blocking the bundled Python.")
            print('Clear the quarantine flag with: xattr -dr com.apple.quarantine "/Applications/Inkscape.app"')
        raise


def check_runtime_deps() -> bool:
    try:
        import inkex  # noqa: F401
    except ImportError:
        print("inkex is not importable from this Python; the extension needs Inkscape's bundled copy")
        print("or: pip install -r requirements.txt")
        return False
    return True


def find_inkscape_python(system: Optional[str] = None) -> Optional[Path]:
    override = os.environ.get(INKSCAPE_PYTHON_ENV)
    if override:
        return Path(override).expanduser()

    system = (system or platform.system()).lower()
    roots: List[Path] = []
    if system == "windows":
        for var in ("ProgramFiles", "ProgramFiles(x86)"):
            if os.environ.get(var):
                roots.append(Path(os.environ[var]) / "Inkscape")
        if os.environ.get("LOCALAPPDATA"):
            roots.append(Path(os.environ["LOCALAPPDATA"]) / "Programs" / "Inkscape")
    elif system == "darwin":
        roots.append(Path("/Applications/Inkscape.app"))

    inkscape_exe = shutil.which("inkscape")
    if inkscape_exe:
        resolved = Path(inkscape_exe).resolve()
        if system == "windows":
            roots.append(resolved.parent.parent)
        elif system == "darwin":
            roots.extend(parent for parent in resolved.parents if parent.name == "Inkscape.app")

    for root in roots:
        for relative in _BUNDLED_PYTHON.get(system, ()):
            candidate = root / relative
            if candidate.exists():
                return candidate
    return None


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Install the embroidery DST/PES/G-code Inkscape output extension.")
    parser.add_argument(
        "--dest",
        type=Path,
        default=None,
        help="Inkscape extensions directory (defaults to your user profile).",
    )
    parser.add_argument("--python", default=None, help="Python used for pip installs (defaults to Inkscape's).")
    parser.add_argument(
        "--inkscape-python",
        default=None,
        help=f"Explicit Inkscape Python path (or set {INKSCAPE_PYTHON_ENV}).",
    )
    parser.add_argument("--skip-pip", action="store_true", help="Skip installing pip dependencies.")
    parser.add_argument("--uninstall", action="store_true", help="Remove previously installed extension files.")
    parser.add_argument("--dry-run", action="store_true", help="Show actions without making changes.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    dest = args.dest or default_extension_dir()
    files = extension_files()

    if args.uninstall:
        removed = remove_files([path.name for path in files], dest, args.dry_run)
        print(f"Removed {len(removed)} file(s) from {dest}.")
        return 0

    inkscape_python = Path(args.inkscape_python).expanduser() if args.inkscape_python else find_inkscape_python()
    python_exe = args.python or (str(inkscape_python) if inkscape_python else sys.executable)
    print(f"Using Python: {python_exe}")

    install_files(files, dest, args.dry_run)
    if not args.skip_pip:
        run_pip_install(python_exe, args.dry_run)
    if not args.dry_run:
        check_runtime_deps()
    print("Done. Restart Inkscape and pick the DST, PES or G-code type in Save As.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
