"""
Media Generation MCP Servers
============================

MCP tools that proxy prompts and images to generative-AI backends and
write the results to disk.

Supported Providers:
- Gemini (image generation and editing)
- Replicate (images, background removal, 3D meshes, sound effects)
- Hugging Face (image generation, background removal)
"""

__version__ = "1.0.0"
