from acmerenew.install.installer import LOGICAL_FILES, Installer, output_paths

__all__ = ["LOGICAL_FILES", "Installer", "output_paths"]
