# recitation/utils.py
import sys
import os

# Path handling for both normal script execution and PyInstaller frozen bundles.


def get_app_path(resource_path: str = '', writable: bool = False) -> str:
    """
    Get the absolute path to a resource or writable directory.

    Args:
        resource_path: Relative path to a resource/directory.
                       Leave empty for the base directory itself.
        writable:
            If True: the path is relative to the executable's directory (frozen)
                     or the project root, and the parent directory is created.
            If False: the path is relative to the bundled read-only root
                      (sys._MEIPASS when frozen, project root otherwise).

    Returns:
        Absolute path as a string.
    """
    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        base_path = os.path.dirname(sys.executable) if writable else sys._MEIPASS
    else:
        # utils.py lives in recitation/, the project root is its parent
        base_path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    full_path = os.path.join(base_path, resource_path) if resource_path else base_path

    if writable and resource_path:
        # A path whose last part has an extension is a file: create its parent only
        if '.' in os.path.basename(resource_path) and not resource_path.endswith(('/', '\\')):
            target_dir = os.path.dirname(full_path)
        else:
            target_dir = full_path
        if target_dir:
            os.makedirs(target_dir, exist_ok=True)

    return full_path


def get_data_path(filename: str) -> str:
    """Path of a file shipped in recitation/database/."""
    return get_app_path(os.path.join('recitation', 'database', filename), writable=False)
