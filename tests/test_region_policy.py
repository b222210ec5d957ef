# Copyright (c) Meta Platforms, Inc. and affiliates.
# All rights reserved.

# This source code is licensed under the license found in the
# LICENSE file in the root directory of this source tree.

from samj.encoding.policy import EMPTY_RECT, RegionEncodingPolicy
from samj.encoding.region import EncodedRegion, EncodingThresholds, Rect


class TestRect:
    def test_contains_point_is_half_open(self):
        rect = Rect(10, 20, 5, 5)
        assert rect.contains_point(10, 20)
        assert rect.contains_point(14, 24)
        assert not rect.contains_point(15, 24)
        assert not rect.contains_point(14, 25)

    def test_contains_rect_is_closed(self):
        outer = Rect(0, 0, 100, 100)
        assert outer.contains_rect(Rect(0, 0, 100, 100))
        assert outer.contains_rect(Rect(10, 10, 20, 20))
        assert not outer.contains_rect(Rect(90, 90, 20, 5))

    def test_empty(self):
        assert EMPTY_RECT.is_empty()
        assert not Rect(0, 0, 1, 1).is_empty()


class TestEncodedRegion:
    def test_to_local_rounds_up(self):
        region = EncodedRegion((10, 20), (100, 60), scale=2)
        assert region.to_local(15, 21) == (3, 1)
        assert region.to_local(10, 20) == (0, 0)
        assert region.local_size == (50, 30)

    def test_local_size_rounds_up(self):
        assert EncodedRegion((0, 0), (5, 3), scale=2).local_size == (3, 2)

    def test_to_full(self):
        region = EncodedRegion((10, 20), (100, 60), scale=2)
        assert region.to_full(3, 1) == (16, 22)

    def test_box_to_local(self):
        region = EncodedRegion((941, 941), (128, 128))
        assert region.box_to_local([1000, 1000, 1010, 1010]) == (59, 59, 69, 69)

    def test_fits_in_and_covers_whole(self):
        region = EncodedRegion((0, 0), (100, 80))
        assert region.fits_in(100, 80)
        assert region.covers_whole(100, 80)
        assert not EncodedRegion((50, 0), (100, 80)).fits_in(100, 80)
        assert not EncodedRegion((0, 0), (50, 80)).covers_whole(100, 80)


class TestEncodingThresholds:
    def test_small_image_limits(self):
        t = EncodingThresholds()
        assert t.is_small(512, 512)
        assert not t.is_small(513, 512)
        assert t.is_small(1536, 100)
        assert not t.is_small(1537, 10)

    def test_scale(self):
        t = EncodingThresholds()
        assert t.scale_for(128, 128) == 1
        assert t.scale_for(4096, 4096) == 2
        assert t.scale_for(100, 5000) == 1


class TestBoxPolicy:
    def setup_method(self):
        self.policy = RegionEncodingPolicy()

    def test_region_for_small_box_on_large_image(self):
        rect = self.policy.region_for_box([1000, 1000, 1010, 1010], 2048, 2048)
        assert rect == Rect(941, 941, 128, 128)

    def test_region_for_box_stays_inside_image(self):
        rect = self.policy.region_for_box([2040, 2040, 2047, 2047], 2048, 2048)
        assert rect == Rect(1920, 1920, 128, 128)

    def test_region_for_elongated_box(self):
        # short side 20 -> 200; the long side is capped at 3x the short one
        rect = self.policy.region_for_box([500, 500, 700, 520], 2048, 2048)
        assert (rect.width, rect.height) == (600, 200)
        assert rect.contains_rect(Rect(500, 500, 200, 20))

    def test_box_decision_without_region(self):
        rect = self.policy.box_decision([1000, 1000, 1010, 1010], None, 2048, 2048)
        assert rect == Rect(941, 941, 128, 128)

    def test_box_decision_is_idempotent(self):
        box = [1000, 1000, 1010, 1010]
        rect = self.policy.box_decision(box, None, 2048, 2048)
        region = EncodedRegion.from_rect(rect)
        assert self.policy.box_decision(box, region, 2048, 2048) is None

    def test_box_outside_region_triggers_reencode(self):
        region = EncodedRegion((941, 941), (128, 128))
        rect = self.policy.box_decision([1500, 1500, 1510, 1510], region, 2048, 2048)
        assert rect is not None
        assert rect.contains_rect(Rect(1500, 1500, 10, 10))

    def test_is_area_encoded_is_strict(self):
        region = EncodedRegion((0, 0), (100, 100))
        assert self.policy.is_area_encoded([1, 1, 99, 99], region)
        assert not self.policy.is_area_encoded([0, 10, 50, 50], region)
        assert not self.policy.is_area_encoded([10, 10, 50, 100], region)
        assert not self.policy.is_area_encoded([1, 1, 99, 99], None)

    def test_needs_more_resolution(self):
        region = EncodedRegion((0, 0), (1000, 1000))
        assert self.policy.needs_more_resolution([0, 0, 10, 10], region)
        # only one axis is too small
        assert not self.policy.needs_more_resolution([0, 0, 30, 10], region)
        assert not self.policy.needs_more_resolution([0, 0, 10, 10], None)

    def test_bounding_box_too_big(self):
        region = EncodedRegion((0, 0), (100, 100))
        assert self.policy.bounding_box_too_big([0, 0, 100, 100], region)
        assert not self.policy.bounding_box_too_big([0, 0, 50, 100], region)
        assert self.policy.bounding_box_too_big([0, 0, 1, 1], None)


class TestPointsPolicy:
    def setup_method(self):
        self.policy = RegionEncodingPolicy()

    def test_first_points_on_unencoded_image(self):
        rect = self.policy.points_decision([(500, 600)], EMPTY_RECT, None, 2048, 2048)
        assert rect == Rect(436, 536, 128, 128)

    def test_points_inside_current_region_keep_it(self):
        region = EncodedRegion((436, 536), (128, 128))
        rect = self.policy.points_decision([(500, 600)], region.rect, region, 2048, 2048)
        assert rect is None

    def test_points_far_away_move_the_region(self):
        region = EncodedRegion((436, 536), (128, 128))
        rect = self.policy.points_decision([(1500, 1500)], region.rect, region, 2048, 2048)
        assert rect is not None
        assert rect.contains_point(1500, 1500)

    def test_needed_area_contains_every_point(self):
        points = [(100, 100), (400, 250), (300, 900)]
        needed = self.policy.approximate_area_needed(points, 2048, 2048)
        for x, y in points:
            assert needed.contains_point(x, y)

    def test_needed_area_is_shifted_into_image(self):
        needed = self.policy.approximate_area_needed([(2040, 2040)], 2048, 2048)
        assert needed.x1 <= 2048 and needed.y1 <= 2048
        assert needed.width >= 128 and needed.height >= 128

    def test_extend_rect_uses_margin(self):
        extended = self.policy.extend_rect(Rect(436, 536, 128, 128), 2048, 2048)
        assert extended == Rect(372, 472, 256, 256)

    def test_extend_rect_clamps_to_image(self):
        extended = self.policy.extend_rect(Rect(0, 0, 2048, 2048), 2048, 2048)
        assert extended == Rect(0, 0, 2048, 2048)
