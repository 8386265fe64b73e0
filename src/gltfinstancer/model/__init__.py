"""
The MODEL layer contains pure data structures.
It has NO knowledge of the GPU or the windowing collaborator.
It deals with byte ranges, transforms, vertex layouts and scene descriptions.
"""
