# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
import unittest

from shared.json_utils import camel_to_snake, convert_keys, snake_to_camel


class JsonUtilsTest(unittest.TestCase):
    def test_name_conversion(self):
        self.assertEqual(camel_to_snake("occupiedCount"), "occupied_count")
        self.assertEqual(snake_to_camel("logo_url"), "logoUrl")
        self.assertEqual(snake_to_camel("name"), "name")

    def test_nested_conversion(self):
        data = {"community_id": "c1", "events": [{"created_by": "u1"}]}
        self.assertEqual(
            convert_keys(data, "snake_to_camel"),
            {"communityId": "c1", "events": [{"createdBy": "u1"}]},
        )

    def test_preserved_keys_keep_their_contents(self):
        doc = {"occupiedCount": 1, "slots": {"New_Zealand": "u1", "countryTwo": ""}}
        converted = convert_keys(doc, "camel_to_snake", preserve=("slots",))
        self.assertEqual(
            converted,
            {"occupied_count": 1, "slots": {"New_Zealand": "u1", "countryTwo": ""}},
        )

    def test_unknown_direction(self):
        with self.assertRaises(ValueError):
            convert_keys({}, "sideways")


if __name__ == "__main__":
    unittest.main()
