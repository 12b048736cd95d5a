#!/usr/bin/env python
"""
Key Visual CLI - Sample, bake and simulate layered particle key visuals

Usage:
    keyvisual <command> [options]

Examples:
    keyvisual sample hero.png                       # Layer counts with default settings
    keyvisual sample hero.png --depth hero_d.png --preset thoughtform-gateway
    keyvisual bake hero.png -o hero.tfpc            # Write a baked point cloud
    keyvisual inspect hero.tfpc                     # Show header and layer offsets
    keyvisual simulate hero.tfpc --steps 120 --backend numpy
    keyvisual list-presets
"""

import argparse
import logging
import sys
import traceback
import numpy as np
from pathlib import Path
from urllib.parse import urlparse

from .core.config import (
    LayeredSamplerConfig, LAYER_ORDER,
    get_sampler_preset, list_sampler_presets, load_sampler_config,
)
from .core.loader import ImageLoader
from .core.pointcloud import (
    load_tfpc, save_tfpc, estimate_tfpc_size, format_file_size,
)
from .sampling.layered import LayeredSampler, LayeredParticleData
from .simulation.gpgpu import ParticleSimulation

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='keyvisual',
        description="Layered particle sampling and GPU simulation for key visuals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  sample        - Sample an image and print per-layer particle counts
  bake          - Sample an image and write a .tfpc point cloud
  inspect       - Print the header and layer offsets of a .tfpc file
  simulate      - Run the particle simulation for N steps
  list-presets  - Show built-in sampler presets

Examples:
  %(prog)s sample hero.png --max-particles 20000
  %(prog)s bake hero.png --depth hero_depth.png -o out/hero.tfpc
  %(prog)s simulate hero.png --steps 60 --backend numpy
        """
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging verbosity (default: WARNING)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Print tracebacks on errors'
    )

    sub = parser.add_subparsers(dest='command', metavar='COMMAND')

    def add_sampling_args(p):
        p.add_argument('image', type=str, help='Source image (path or URL)')
        p.add_argument('--depth', type=str, default=None, metavar='PATH',
                       help='Depth map (red channel, white = near)')
        p.add_argument('--preset', type=str, default=None, metavar='NAME',
                       help='Built-in sampler preset (see list-presets)')
        p.add_argument('--config', type=str, default=None, metavar='YAML',
                       help='YAML sampler config (may name a base preset)')
        p.add_argument('--max-particles', type=int, default=None,
                       help='Override the particle budget')
        p.add_argument('--sample-step', type=int, default=None,
                       help='Override the sampling stride in pixels')
        p.add_argument('--seed', type=int, default=None,
                       help='Seed for the per-particle animation phase')

    p_sample = sub.add_parser('sample', help='Print per-layer particle counts')
    add_sampling_args(p_sample)

    p_bake = sub.add_parser('bake', help='Write a baked .tfpc point cloud')
    add_sampling_args(p_bake)
    p_bake.add_argument('-o', '--output', type=str, default=None,
                        help='Output path (default: <image>.tfpc, URL basename for URLs)')

    p_inspect = sub.add_parser('inspect', help='Show a .tfpc header')
    p_inspect.add_argument('file', type=str, help='Baked point cloud (path or URL)')

    p_sim = sub.add_parser('simulate', help='Run the particle simulation')
    add_sampling_args(p_sim)
    p_sim.add_argument('--steps', type=int, default=60,
                       help='Number of simulation steps (default: 60)')
    p_sim.add_argument('--dt', type=float, default=0.016,
                       help='Seconds per step (default: 0.016)')
    p_sim.add_argument('--backend', type=str, default='auto', choices=['auto', 'gl', 'numpy'],
                       help='Compute backend (default: auto)')

    sub.add_parser('list-presets', help='List sampler presets')

    return parser


def resolve_config(args) -> LayeredSamplerConfig:
    """Preset or YAML file, then command-line overrides"""
    if args.config:
        config = load_sampler_config(args.config)
    elif args.preset:
        config = get_sampler_preset(args.preset)
    else:
        config = LayeredSamplerConfig()

    overrides = {}
    if args.max_particles is not None:
        overrides['max_particles'] = args.max_particles
    if args.sample_step is not None:
        overrides['sample_step'] = args.sample_step
    return config.with_overrides(**overrides) if overrides else config


def sample_from_args(args) -> LayeredParticleData:
    config = resolve_config(args)
    sampler = LayeredSampler(config, loader=ImageLoader(), seed=args.seed)
    return sampler.sample(args.image, args.depth)


def print_layer_counts(data: LayeredParticleData) -> None:
    print(f"Image: {data.image_width}x{data.image_height}")
    for kind in LAYER_ORDER:
        print(f"  {kind.value:<10} {data.layers[kind].count}")
    print(f"  {'total':<10} {data.total_count}")


def cmd_sample(args) -> None:
    print(f"Sampling: {args.image}")
    print_layer_counts(sample_from_args(args))


def default_bake_output(image: str) -> Path:
    """<image>.tfpc beside a local file, or in the working directory for URLs"""
    if image.startswith(('http://', 'https://')):
        name = Path(urlparse(image).path).name or 'keyvisual'
        return Path(name).with_suffix('.tfpc')
    return Path(image).with_suffix('.tfpc')


def cmd_bake(args) -> None:
    output = Path(args.output) if args.output else default_bake_output(args.image)
    print(f"Baking: {args.image}")
    data = sample_from_args(args)
    print_layer_counts(data)
    path = save_tfpc(data, output)
    print(f"\nCreated: {path} ({format_file_size(estimate_tfpc_size(data.total_count))})")


def cmd_inspect(args) -> None:
    cloud = load_tfpc(args.file)
    print(f"TFPC v{cloud.version}: {cloud.total_count} particles")
    print(f"Image: {cloud.image_width}x{cloud.image_height}")
    print(f"Size: {format_file_size(estimate_tfpc_size(cloud.total_count))}")
    print("\nLayers:")
    for kind in LAYER_ORDER:
        r = cloud.offsets[kind]
        config = cloud.layers[kind].config
        state = 'on' if config.enabled else 'off'
        print(f"  {kind.value:<10} start={r.start:<8} count={r.count:<8} {state} ({config.color_mode.value})")

    art = cloud.art_direction
    print("\nArt direction:")
    print(f"  contrast={art.contrast:.3g} gamma={art.gamma:.3g} "
          f"depth_scale={art.depth_scale:.3g} depth_gamma={art.depth_gamma:.3g} "
          f"depth_invert={art.depth_invert}")


def cmd_simulate(args) -> None:
    if args.image.lower().endswith('.tfpc'):
        data = load_tfpc(args.image, seed=args.seed).to_particle_data()
    else:
        data = sample_from_args(args)

    positions = data.merged().positions.reshape(-1, 3)
    sim = ParticleSimulation(positions, backend=args.backend)
    if not sim.available:
        raise RuntimeError("GPU simulation unavailable; rerun with --backend numpy")

    print(f"Simulating {sim.particle_count} particles "
          f"({sim.texture_size}x{sim.texture_size} texture, {sim.backend.name}) for {args.steps} steps")
    try:
        for step in range(args.steps):
            sim.update_uniforms(time=step * args.dt, delta_time=args.dt)
            sim.compute()

        origin = positions.copy()
        origin[:, 2] = 0.0
        current = sim.read_positions()
        distance = float(np.linalg.norm(current - origin, axis=1).mean()) if len(current) else 0.0
        print(f"Mean distance to origin: {distance:.4f}")
    finally:
        sim.dispose()


def cmd_list_presets(args) -> None:
    print("Available Sampler Presets:\n")
    for name in list_sampler_presets():
        config = get_sampler_preset(name)
        print(f"    {name:<20} - {config.max_particles} particles, step {config.sample_step}, "
              f"depth scale {config.art_direction.depth_scale:g}")
    print(f"\nTotal: {len(list_sampler_presets())} presets")
    print("\nUsage: --preset <name>")


COMMANDS = {
    'sample': cmd_sample,
    'bake': cmd_bake,
    'inspect': cmd_inspect,
    'simulate': cmd_simulate,
    'list-presets': cmd_list_presets,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        COMMANDS[args.command](args)
    except Exception as e:
        print(f"Error: {e}")
        if args.verbose:
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
