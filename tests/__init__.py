"""
siftmatch test suite

Structure:
- unit/: unit tests per pipeline stage and the command line
- synthetic.py: builders for synthetic keypoint collections with known geometry
"""
