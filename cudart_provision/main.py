import argparse
import logging
import pathlib

import rich.console

from cudart_provision import config
from cudart_provision.build import Layout
from cudart_provision.errors import ProvisionError
from cudart_provision.provisioner import provision
from cudart_provision.utils.detect import GPUDetector
from cudart_provision.utils.rich_helpers import df_to_table

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse CLI arguments.
    """
    default = Layout.default()

    parser = argparse.ArgumentParser(
        description = 'Discover the CUDA toolchain, build the native shim and write the toolchain record.',
        formatter_class = argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument('--deps-dir', type = pathlib.Path, default = default.deps_dir, help = 'Directory of the shim sources, artifacts and toolchain record.')
    parser.add_argument('--test-dir', type = pathlib.Path, default = default.test_dir, help = 'Directory of the test fixture source.')
    parser.add_argument('--force', action = 'store_true', help = 'Rebuild even if the toolchain did not change.')
    parser.add_argument('--verbose', action = 'store_true', help = 'Log debug messages.')

    group = parser.add_mutually_exclusive_group()
    group.add_argument('--show', action = 'store_true', help = 'Print the current toolchain record and exit.')
    group.add_argument('--devices', action = 'store_true', help = 'Print the GPUs detected by nvidia-smi and exit.')

    return parser.parse_args(argv)

def main(argv: list[str] | None = None) -> None:

    args = parse_args(argv)

    logging.basicConfig(level = logging.DEBUG if args.verbose else logging.INFO)
    logging.debug(f'Received arguments: {args}.')

    layout = Layout(deps_dir = args.deps_dir, test_dir = args.test_dir)

    console = rich.console.Console()

    if args.show:
        console.print(config.load(layout.config_path).to_table())
        return

    if args.devices:
        console.print(df_to_table(GPUDetector().detect().astype(str)))
        return

    try:
        outcome = provision(layout, force = args.force)
    except ProvisionError as error:
        logging.error(error)
        raise SystemExit(1) from error

    logging.info(f'Provisioning done ({outcome}).')

if __name__ == "__main__":

    main()
