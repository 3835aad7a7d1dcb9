#!/usr/bin/env python
"""
Tree Manipulation Tool - Main Script

Reads one tree, applies one manipulation or statistic, and writes the result
to standard output. This script is the command-line interface to the
biotree engine; chain several runs with pipes to combine manipulations.
"""

import sys
import argparse
import logging
from biotree.exceptions import EngineError
from biotree.pipeline import OperationSpec, TreeManipulationPipeline


# Set up logging
def setup_logging(log_level, log_file=None):
    """Configure logging system based on specified log level and optional log file."""
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    # Log to stderr so stdout carries only the tree or report
    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        file_handler.setFormatter(formatter)

        logging.getLogger().addHandler(file_handler)

        logging.info(f"Logging to file: {log_file}")


def split_list(value):
    """Split a comma separated option value into identifiers."""
    return [item.strip() for item in value.split(',') if item.strip()]


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Tree manipulations: rerooting, pruning, distances and summary statistics",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("tree", nargs="?", default="-", help="Input tree file ('-' for standard input)")
    parser.add_argument("--input", "-i", choices=["newick", "nhx", "nexus"], default="newick",
                        help="Input tree format")
    parser.add_argument("--output", "-o", choices=["newick", "nhx", "nexus", "tabtree"], default="newick",
                        help="Output tree format")
    parser.add_argument("--as-text", "-t", action="store_true", help="Shorthand for --output tabtree")
    parser.add_argument("--seed", type=int, help="Random seed for --multi2bi and --random")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error", "critical"],
                        default="warning", help="Set logging level")
    parser.add_argument("--log-file", help="Path to output log file")
    parser.add_argument("--version", "-V", action="version", version="%(prog)s 0.1.0")

    operations = parser.add_mutually_exclusive_group()
    operations.add_argument("--ci", "-c", metavar="TRAIT_FILE",
                            help="Consistency index of informative sites in a binary trait table")
    operations.add_argument("--clean-br", "-b", action="store_true", help="Remove branch lengths")
    operations.add_argument("--clean-boot", "-B", action="store_true", help="Remove support values")
    operations.add_argument("--del-otus", "-d", type=split_list, help="Delete these OTUs: 'otu1,otu2'")
    operations.add_argument("--del-low-boot", "-D", type=float, help="Collapse branches with support below cutoff")
    operations.add_argument("--depth", help="Depth of a node to the root")
    operations.add_argument("--dist", type=split_list, help="Distance between two nodes: 'node1,node2'")
    operations.add_argument("--dist-all", action="store_true", help="Half-matrix of distances between all OTUs")
    operations.add_argument("--ead", action="store_true", help="Edge-length abundance distribution")
    operations.add_argument("--label-nodes", action="store_true", help="Prefix each node label with its id")
    operations.add_argument("--label-internal", action="store_true",
                            help="Give unlabeled internal nodes generated labels")
    operations.add_argument("--lca", type=split_list, help="Most recent common ancestor of 'node1,node2,...'")
    operations.add_argument("--length", "-l", action="store_true", help="Total branch length")
    operations.add_argument("--length-all", "-L", action="store_true", help="All nodes with branch lengths")
    operations.add_argument("--ltt", type=int, metavar="BINS", help="Lineage-through-time bins")
    operations.add_argument("--mid-point", "-m", action="store_true", help="Reroot at the midpoint")
    operations.add_argument("--multi2bi", action="store_true", help="Randomly resolve multifurcations")
    operations.add_argument("--otus-all", "-u", action="store_true", help="All OTUs with branch lengths")
    operations.add_argument("--otus-desc", "-U", nargs="?", const="all",
                            help="OTUs below an internal node, or 'all' internal nodes")
    operations.add_argument("--otus-num", "-n", action="store_true", help="Number of OTUs")
    operations.add_argument("--outgroup", help="Reroot on the branch above this node")
    operations.add_argument("--random", type=int, metavar="SAMPLE_SIZE", help="Tree of a random OTU sample")
    operations.add_argument("--reroot", "-r", help="Make this node the root")
    operations.add_argument("--sis-pairs", action="store_true", help="Sister OTU matrix")
    operations.add_argument("--subset", "-s", type=split_list, help="Tree of these nodes: 'node1,node2'")
    operations.add_argument("--swap-otus", metavar="OTU", help="One tree per OTU swapped with this OTU")
    operations.add_argument("--tree-shape", action="store_true", help="Merge matrix for apTreeshape")
    operations.add_argument("--walk", "-w", metavar="OTU", help="Walk the tree from this OTU")

    return parser.parse_args(argv)


def build_operation(args):
    """Translate parsed options into an OperationSpec; None when only reformatting."""
    if args.ci:
        return OperationSpec('ci', {'trait_file': args.ci})
    if args.del_otus:
        return OperationSpec('del-otus', {'nodes': args.del_otus})
    if args.del_low_boot is not None:
        return OperationSpec('del-low-boot', {'threshold': args.del_low_boot})
    if args.depth:
        return OperationSpec('depth', {'node': args.depth})
    if args.dist:
        return OperationSpec('dist', {'nodes': args.dist})
    if args.lca:
        return OperationSpec('lca', {'nodes': args.lca})
    if args.ltt is not None:
        return OperationSpec('ltt', {'bins': args.ltt})
    if args.otus_desc:
        return OperationSpec('otus-desc', {'node': args.otus_desc})
    if args.outgroup:
        return OperationSpec('outgroup', {'node': args.outgroup})
    if args.random is not None:
        return OperationSpec('random', {'size': args.random})
    if args.reroot:
        return OperationSpec('reroot', {'node': args.reroot})
    if args.subset:
        return OperationSpec('subset', {'nodes': args.subset})
    if args.swap_otus:
        return OperationSpec('swap-otus', {'otu': args.swap_otus})
    if args.walk:
        return OperationSpec('walk', {'otu': args.walk})

    flags = ['clean_br', 'clean_boot', 'dist_all', 'ead', 'label_nodes', 'label_internal', 'length',
             'length_all', 'mid_point', 'multi2bi', 'otus_all', 'otus_num', 'sis_pairs', 'tree_shape']
    for flag in flags:
        if getattr(args, flag):
            return OperationSpec(flag.replace('_', '-'))
    return None


def main(argv=None):
    """Main function."""
    args = parse_args(argv)

    setup_logging(args.log_level, args.log_file)
    logger = logging.getLogger(__name__)

    config = {
        'parser': {'schema': args.input},
        'writer': {'schema': 'tabtree' if args.as_text else args.output},
        'random': {'seed': args.seed},
    }
    pipeline = TreeManipulationPipeline(config=config)

    try:
        if args.tree == "-":
            data = sys.stdin.buffer.read()
        else:
            with open(args.tree, 'rb') as handle:
                data = handle.read()

        tree = pipeline.build_tree(data)
        operation = build_operation(args)
        result = tree if operation is None else pipeline.apply(tree, operation)
        sys.stdout.write(pipeline.render(result).decode('utf-8'))

    except (EngineError, OSError) as e:
        logger.error(f"Error during tree manipulation: {str(e)}")
        logger.debug("Exception details:", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
