#!/usr/bin/env python3
"""Cross-platform install script for stealth-relay.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes pytest)
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
DATA_SUBDIRS = ("temp_storage", "sessions")


def main() -> None:
    # 1. Check Python version
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"

    bin_dir = "Scripts" if is_windows else "bin"
    pip = os.path.join(venv_dir, bin_dir, "pip")

    # 2. Create virtual environment
    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    # 3. Upgrade pip
    print("Upgrading pip...")
    subprocess.check_call([pip, "install", "--upgrade", "pip"])

    # 4. Install project
    target = ".[dev]" if dev else "."
    print(f"Installing stealth-relay ({'development' if dev else 'production'})...")
    subprocess.check_call([pip, "install", "-e", target] if dev else [pip, "install", target], cwd=project_dir)

    # 5. Create data directories (temp media, session credentials)
    data_dir = os.path.join(project_dir, "data")
    for sub in DATA_SUBDIRS:
        os.makedirs(os.path.join(data_dir, sub), exist_ok=True)

    # 6. Copy config files if missing
    for src, dst in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if not os.path.exists(dst_path) and os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")
        elif os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"

    print()
    print("=" * 50)
    print("  stealth-relay installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Edit config.yaml - configure accounts and their session class")
    print("  2. Edit .env - set vault numbers referenced from config.yaml")
    print("  3. Activate the virtual environment:")
    print(f"       {activate_cmd}")
    print("  4. Check the configuration:")
    print("       python -m stealth_relay config-check")
    print("  5. Start the relay:")
    print("       python -m stealth_relay start")
    print()


if __name__ == "__main__":
    main()
