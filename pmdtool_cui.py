import argparse
import logging
import sys
from typing import List, Optional

import pmdtool
import savetest

VERSION = "1.0.0"  # Version of the PMD Tool

# Usage: python pmdtool_cui.py info <model.pmd>
#        python pmdtool_cui.py trim <model.pmd> [--out <output.pmd>]
#        python pmdtool_cui.py roundtrip <model.pmd>
#        python pmdtool_cui.py xml <model.pmd> [--out <output.xml>] [--indent N]
# Defaults come from pmdtool_settings.json in the working directory.


def build_parser(settings: dict) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect, trim and convert PMD models.")
    parser.add_argument("--version", action='version', version=f'PMD Tool {VERSION}')
    parser.add_argument("--log_level", "-l", type=str, default=settings["log_level"],
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help=f"Logging level (Default: '{settings['log_level']}').")
    parser.add_argument("--settings", type=str, default=pmdtool.SETTINGS_FILE,
                        help="Settings file to read defaults from.")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="Print the model structure and check element names.")
    p.add_argument("path", type=str, help="PMD file path.")

    p = sub.add_parser("trim", help="Drop unused surfaces and vertices.")
    p.add_argument("path", type=str, help="PMD file path.")
    p.add_argument("--out", "-o", type=str, default="",
                   help=f"Output PMD file path (Default: input name + '{settings['output_suffix']}').")

    p = sub.add_parser("roundtrip", help="Load and save a model, then compare the files byte by byte.")
    p.add_argument("path", type=str, help="PMD file path.")
    p.add_argument("--out", "-o", type=str, default="",
                   help=f"Output PMD file path (Default: input name + '{settings['output_suffix']}').")
    p.add_argument("--trim", action=argparse.BooleanOptionalAction, default=settings["trim_before_save"],
                   help="Trim the model before saving.")

    p = sub.add_parser("xml", help="Convert a model to XML.")
    p.add_argument("path", type=str, help="PMD file path.")
    p.add_argument("--out", "-o", type=str, default="",
                   help="Output XML file path (Default: input name with '.xml').")
    p.add_argument("--indent", type=int, default=settings["xml_indent"],
                   help=f"Indent width, 0 for none (Default: {settings['xml_indent']}).")

    return parser


def pre_parse_settings(argv: Optional[List[str]]) -> dict:
    """Read --settings before the full parse so the file can supply defaults."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--settings", type=str, default=pmdtool.SETTINGS_FILE)
    known, _ = pre.parse_known_args(argv)
    return pmdtool.load_settings(known.settings)


def main(argv: Optional[List[str]] = None) -> int:
    settings = pre_parse_settings(argv)
    args = build_parser(settings).parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format='%(asctime)s - %(filename)s : %(levelname)s - %(message)s')

    if args.command == "info":
        ret, msg = pmdtool.info_pmd_file(args.path)
    elif args.command == "trim":
        path_out = args.out or pmdtool.output_path_for(args.path, settings["output_suffix"])
        ret, msg = pmdtool.trim_pmd_file(args.path, path_out)
    elif args.command == "roundtrip":
        path_out = args.out or pmdtool.output_path_for(args.path, settings["output_suffix"])
        ret, msg = savetest.test_roundtrip(args.path, path_out, trim=args.trim)
    else:
        path_out = args.out or pmdtool.output_path_for(args.path, "", ".xml")
        ret, msg = pmdtool.convert_to_xml(args.path, path_out, indent=args.indent)

    if not ret:
        print(f"Error: {msg}")
        return 1
    print(msg)
    return 0


if __name__ == "__main__":
    sys.exit(main())

# End of pmdtool_cui.py
