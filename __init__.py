# __init__.py
from .ar_dof.nodes import ARDofAnalyzer, ARDofPass, ARDepthOfField

NODE_CLASS_MAPPINGS = {
    # Modular nodes
    "ARDofAnalyzer": ARDofAnalyzer,
    "ARDofPass": ARDofPass,

    # All-in-one two-pass node
    "ARDepthOfField": ARDepthOfField,
}

NODE_DISPLAY_NAME_MAPPINGS = {
    "ARDofAnalyzer": "AR DOF Analyzer (Depth → Sigma)",
    "ARDofPass": "AR DOF Separable Pass",
    "ARDepthOfField": "AR Depth of Field (Edge-Aware)",
}

# For ComfyUI compatibility
__all__ = ["NODE_CLASS_MAPPINGS", "NODE_DISPLAY_NAME_MAPPINGS"]
