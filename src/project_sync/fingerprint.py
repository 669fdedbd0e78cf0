"""Project fingerprint recorded in the whisk-managed annotation."""

import hashlib
import os
from pathlib import Path
from typing import Union


def get_project_hash(manifest_content: str, manifest_path: Union[str, Path]) -> str:
    """SHA1 of "Runtime <size>\\0<content>".

    The size is the manifest file's size on disk; if the file does not
    exist it is the UTF-8 length of the content. The template must stay
    byte-identical so earlier deployments keep matching.

    Args:
        manifest_content: Manifest text
        manifest_path: Manifest file path

    Returns:
        Hex digest
    """
    if os.path.exists(manifest_path):
        size = os.stat(manifest_path).st_size
    else:
        size = len(manifest_content.encode('utf-8'))
    digest = hashlib.sha1()
    digest.update(f'Runtime {size}\0{manifest_content}'.encode('utf-8'))
    return digest.hexdigest()
