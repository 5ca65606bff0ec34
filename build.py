import os
import shutil
import subprocess
import sys
from pathlib import Path

from media_session.config import BIN_DIR, HELPER_NAME, get_helper_executable_name

def clean_artifacts():
    """Remove previous build artifacts."""
    artifacts = ["build", "dist", f"{HELPER_NAME}.spec"]
    for artifact in artifacts:
        if os.path.exists(artifact):
            print(f"Removing {artifact}...")
            try:
                if os.path.isdir(artifact):
                    shutil.rmtree(artifact)
                else:
                    os.remove(artifact)
            except OSError as e:
                print(f"Error removing {artifact}: {e}")

def build_command():
    """PyInstaller command line for the one-file helper binary."""
    cmd = [
        "pyinstaller",
        "media_helper.py",
        "--name", HELPER_NAME,
        "--onefile",
        "--console",         # stdin/stdout are the IPC channel
        "--clean",
        "--noconfirm",
        "--distpath", str(BIN_DIR),
    ]
    if sys.platform == "win32":
        # winsdk projections pull in compiled submodules that PyInstaller analysis misses
        cmd += ["--collect-submodules", "winsdk.windows.media.control",
                "--collect-submodules", "winsdk.windows.storage.streams"]
    return cmd

def build():
    """Run PyInstaller build into bin/."""
    print(f"Starting {HELPER_NAME} Build (PyInstaller)...")

    clean_artifacts()

    cmd = build_command()
    print(f"Running command: {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True)
    except FileNotFoundError:
        print("\nPyInstaller not found. Install it with: pip install pyinstaller")
        sys.exit(1)
    except subprocess.CalledProcessError as e:
        print(f"\nBuild failed with exit code {e.returncode}")
        sys.exit(1)

    output = Path(BIN_DIR) / get_helper_executable_name()
    print("\n" + "="*60)
    print("Build completed successfully!")
    print("="*60)
    print(f"Helper binary: {output}")
    print("\nHow to run:")
    print(f"  - Resident:  {output}   (commands on stdin: toggle/next/previous/update)")
    print(f"  - One-shot:  {output} toggle")
    print("="*60)

def print_usage():
    """Print usage information."""
    print(f"{HELPER_NAME} Build Script")
    print("="*40)
    print("Usage:")
    print("  python build.py           Build the helper into bin/")
    print("  python build.py clean     Remove build artifacts only")
    print("  python build.py --help    Show this help message")

if __name__ == "__main__":
    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg == "clean":
            clean_artifacts()
            print("Cleanup complete.")
        elif arg == "--help" or arg == "-h":
            print_usage()
        else:
            print(f"Unknown argument: {sys.argv[1]}")
            print_usage()
            sys.exit(1)
    else:
        build()
