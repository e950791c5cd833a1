"""Progressive Lightmap — Atlas Layout Package.

Rectangle packing and UV island remapping that lay out every surface's
first UV channel into one shared lightmap atlas.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
