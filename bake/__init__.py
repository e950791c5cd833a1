"""Lightmap Baker — Bake Pipeline Package.

End-to-end bake runner and result persistence.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
