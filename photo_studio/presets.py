"""Ready-made edit instructions a user can drop into the prompt."""
from typing import Dict, List, Optional

EDIT_PRESETS: List[Dict[str, str]] = [
    {
        "name": "DSLR Quality Portrait",
        "prompt": (
            "Edit this photo into a professional portrait of very high quality and color, comparable to "
            "the results of a Canon EOS R5. Make it look like a recent photo, with great clarity and no "
            "noise. Produce a razor-sharp photo."
        ),
    },
    {
        "name": "Master Studio Portrait",
        "prompt": (
            "Transform this into a professional studio portrait shot with a 50mm f/1.8 lens. Do not change "
            "the person's face, identity, or pose. Use a three-quarter body composition. Retouch skin "
            "naturally while keeping its texture, relight the subject with soft, even, frontal studio "
            "lighting and replace the background with a solid navy blue (#0f2a4a) studio backdrop. Avoid "
            "plastic skin, over-whitened eyes and harsh shadows."
        ),
    },
    {
        "name": "AI Auto Focus",
        "prompt": "Enhance this blurred image",
    },
    {
        "name": "Digital Remaster",
        "prompt": (
            "Restore the old photo to the look of a high resolution modern digital camera with a three "
            "point lighting setup. Restore and refine the background and make the image realistic."
        ),
    },
    {
        "name": "Drone Perspective",
        "prompt": "Change the angle to a top-down angle",
    },
    {
        "name": "Memory Rescue",
        "prompt": "Restore this old damaged photo. Fix scratches, improve quality, enhance details, and colorize if needed.",
    },
    {
        "name": "Faithful Restoration",
        "prompt": (
            "Ultra-realistic respectful restoration: keep face, gaze, features and pose identical. Remove "
            "torn borders, use natural modern colors and realistic skin, photorealistic and high resolution, "
            "with soft diffused studio light."
        ),
    },
    {
        "name": "Time Capsule",
        "prompt": (
            "Analyze the uploaded photo and perform a full restoration. Detect and correct scratches, dust "
            "or dirt spots, fold marks or creases, missing or torn areas, discoloration or yellowing, and "
            "faded or blurry sections. If the photo is black and white, fully colorize it, restoring "
            "original skin tones and clothing colors."
        ),
    },
    {
        "name": "Warm Family Portrait",
        "prompt": (
            "Restore this old photo of one or more people into a colorized version. Use warm lighting, keep "
            "their neutral expressions and make it look like a fresh, high-quality family portrait."
        ),
    },
    {
        "name": "Realistic Refinement",
        "prompt": (
            "Fix damaged facial details and body parts with natural reconstruction, remove visual noise and "
            "sharpen the image, and reconstruct missing background elements from context. Preserve all "
            "facial structure and identity; composition and proportions must remain intact."
        ),
    },
]


def get_preset(name: str) -> Optional[Dict[str, str]]:
    """Look up a preset by name, ignoring case and surrounding whitespace."""
    wanted = (name or "").strip().lower()
    for preset in EDIT_PRESETS:
        if preset["name"].lower() == wanted:
            return preset
    return None
