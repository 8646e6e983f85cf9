import os
import sys

from hypothesis import settings

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))

# 项目根目录用于导入各模块，tests 目录用于导入 mesh_factory
sys.path.insert(0, os.path.dirname(TESTS_DIR))
sys.path.insert(0, TESTS_DIR)

settings.register_profile("ci", max_examples=200)
settings.register_profile("dev", max_examples=100, deadline=None)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "dev"))
