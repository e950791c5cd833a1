"""Lightmap Baker — CPU Reference Host.

Meshes, a numba BVH shadow raytracer, a UV-space rasterizer, render
targets and a scene implementing the collaborator contracts of the baker.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
