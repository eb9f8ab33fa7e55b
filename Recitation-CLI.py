# Recitation-CLI.py

import sys

from colorama import Fore, Style, init

# Initialize Colorama for the whole application run
init(autoreset=True)


def check_python_version():
    if sys.version_info < (3, 9):
        print("Error: Recitation CLI requires Python 3.9 or higher.")
        print("Please upgrade your Python installation.")
        sys.exit(1)


if __name__ == "__main__":
    check_python_version()
    from recitation.cli import main
    try:
        main()
    except Exception:
        # Catch unexpected errors during startup or run
        print(Fore.RED + Style.BRIGHT + "\n--- UNEXPECTED ERROR ---")
        import traceback
        traceback.print_exc()
        print("-----------------------" + Style.RESET_ALL)
        sys.exit(1)
