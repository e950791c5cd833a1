"""Progressive Lightmap — Core Package.

Ping-pong shadow accumulation, light jitter, shader plugin hooks,
collaborator contracts, and configuration loading.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
