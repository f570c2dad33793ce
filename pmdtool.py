"""
pmdtool.py - Utilities for inspecting, checking and converting PMD models.

- Reports: element counts and optional sections of a loaded model.
- Validation: duplicate or unnamed bones, morphs, rigid bodies and joints.
  PMD itself allows both, but many tools address elements by name.
- Trimming: drops surfaces and vertices no material uses, then renumbers.
- XML: writes the model as a pmdModel XML document.

Settings for the command line front-end are kept in a JSON file
(pmdtool_settings.json) in the working directory.

LICENCE: GPL-3.0-or-later (https://www.gnu.org/licenses/gpl-3.0.en.html)
"""

import json
import os
from typing import Any, Dict, Optional, Tuple

import pmdmodel
import pypmd
from pmdstream import InvalidFileError, ExportError
from pmdxml import PmdXmlExporter

import logging

SETTINGS_FILE = "pmdtool_settings.json"

# Default settings, overridden by the settings file and then by command line flags
settings_default: Dict[str, Any] = {
    "log_level": "INFO",
    "output_suffix": "_out",     # appended to the input file name when no output is given
    "trim_before_save": True,    # run Model.trimming() before saving
    "xml_indent": 2,
}


def save_settings(settings: dict, path: str = SETTINGS_FILE) -> bool:
    """Save settings to JSON file."""
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(settings, f, ensure_ascii=False, indent=4)
    except OSError as e:
        logging.error(f"Failed to save settings: {e}")
        return False
    return True


def load_settings(path: str = SETTINGS_FILE) -> dict:
    """Load settings from JSON file if it exists. Missing keys take the defaults."""
    settings = dict(settings_default)
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Failed to load settings from '{path}': {e}")
            return settings
        if not isinstance(loaded, dict):
            logging.warning(f"Ignoring settings file '{path}': not a JSON object")
            return settings
        settings.update((k, v) for k, v in loaded.items() if k in settings_default)
    return settings


def validate_elements(model: pmdmodel.Model) -> bool:
    """Check for duplicate elements. Also check unnamed elements. Returns True if either duplicates or unnamed elements are found."""

    def check(collection: list, kind: str) -> bool:
        seen = set()
        duplicate_found = False
        unnamed_found = False
        for index, item in enumerate(collection):
            name = item.name.primary
            if not name:
                logging.critical(f"Unnamed {kind} found (index: {index})")
                unnamed_found = True
                continue
            if name in seen:
                logging.critical(f"Duplicate {kind} found: {name} (index: {index})")
                duplicate_found = True
                continue
            seen.add(name)
        return duplicate_found or unnamed_found

    ret = False
    ret |= check(model.bones, "bone")
    ret |= check(model.morph_list(), "morph")
    ret |= check(model.rigids, "rigid body")
    ret |= check(model.joints, "joint")

    return ret


# Report functions to print model structure
def post_load_report(model: pmdmodel.Model, name: str) -> None:
    """Print a report of the model's structure after loading."""
    logging.info(f"{name}: {len(model.vertices)} vertices, {len(model.surfaces)} surfaces, {len(model.materials)} materials, {len(model.bones)} bones")
    logging.info(f"{name}: {len(model.ik_chains)} IK chains, {len(model.morph_list())} morphs, {len(model.bone_groups) - 1} bone groups")
    logging.info(f"{name}: {len(model.rigids)} rigid bodies, {len(model.joints)} joints, English names: {model.has_global_text()}, default toons: {model.toon_map.is_default_map()}")
    return


def report_empty_morphs(model: pmdmodel.Model) -> None:
    """Report morphs that move no vertex."""
    empty_morphs = [m for m in model.morph_list() if not m.morph_vertices]
    if empty_morphs:
        logging.info("FYI: The following morphs are empty and will not have any effect on the model:")
        for morph in empty_morphs:
            logging.info(f"  - {morph.name.text} ({morph.morph_type.name})")
    else:
        logging.info("No empty morphs found.")


def load_pmd_file(path: str) -> Optional[pmdmodel.Model]:
    """Load a PMD model from the specified path. Returns None on failure."""
    try:
        return pypmd.load(path)
    except (OSError, InvalidFileError) as e:
        logging.error(f"Error loading PMD model from '{path}': {e}")
        return None


def save_pmd_file(model: pmdmodel.Model, path: str, trim: bool = False) -> Tuple[bool, str]:
    """Save a PMD model to the specified path."""
    if trim:
        model.trimming()
    try:
        pypmd.save(path, model)
    except (OSError, ExportError) as e:
        logging.error(f"Error saving PMD model to '{path}': {e}")
        return False, str(e)
    return True, "Model saved successfully."


def output_path_for(path_in: str, suffix: str, ext: str = ".pmd") -> str:
    """'dir/model.pmd' -> 'dir/model<suffix><ext>'"""
    root, _ = os.path.splitext(path_in)
    return f"{root}{suffix}{ext}"


def info_pmd_file(path: str) -> Tuple[bool, str]:
    """Load a model and report its structure and naming problems."""
    model = load_pmd_file(path)
    if model is None:
        return False, f"Failed to load model from '{path}'."
    post_load_report(model, f"Model '{path}'")
    report_empty_morphs(model)
    if validate_elements(model):
        return True, f"Model '{path}' has duplicate or unnamed elements."
    return True, f"Model '{path}' looks fine."


def trim_pmd_file(path_in: str, path_out: str) -> Tuple[bool, str]:
    """Load a model, drop unused surfaces and vertices, and save it."""
    logging.info(f"▶️ Trimming: {path_in} -> {path_out}")
    model = load_pmd_file(path_in)
    if model is None:
        return False, f"Failed to load model from '{path_in}'."

    vertices, surfaces = len(model.vertices), len(model.surfaces)
    model.trimming()
    logging.info(f"Removed {vertices - len(model.vertices)} vertices, {surfaces - len(model.surfaces)} surfaces")

    ret, msg = save_pmd_file(model, path_out)
    if not ret:
        return False, f"Failed to save trimmed model to '{path_out}': {msg}"
    return True, f"Trim completed successfully ({path_in} -> {path_out})"


def convert_to_xml(path_in: str, path_out: str, indent: int = settings_default["xml_indent"]) -> Tuple[bool, str]:
    """Load a model and write it as XML."""
    logging.info(f"▶️ Converting: {path_in} -> {path_out}")
    model = load_pmd_file(path_in)
    if model is None:
        return False, f"Failed to load model from '{path_in}'."

    try:
        with open(path_out, "wb") as f:
            PmdXmlExporter(f, indent=indent).dump_model(model)
    except OSError as e:
        logging.error(f"Error writing XML to '{path_out}': {e}")
        return False, f"Failed to write XML to '{path_out}': {e}"
    return True, f"XML written successfully ({path_in} -> {path_out})"
