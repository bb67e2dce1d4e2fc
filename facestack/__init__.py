"""
FaceStack - face-guided video stacking service.

Crops two clips around their principal faces, stacks them vertically with
merged audio, and tracks faces live on the composed output.
"""
