import sys

from gltf_anim_split.main import main

sys.exit(main())
